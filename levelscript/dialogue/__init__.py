"""
Dialogue scripts, the script builder and the frame-driven runner.

Exports:
- DialogueScript and its steps: Say, Pause, Choice, ChoiceOption, ActionStep, End
- DialogueRunner, DialogueState, DialogueInput: Script execution
- ScriptBuilder, parse_inline_speaker: Property table -> script
"""

from levelscript.dialogue.builder import ScriptBuilder, parse_inline_speaker
from levelscript.dialogue.runner import DialogueInput, DialogueRunner, DialogueState
from levelscript.dialogue.script import (
    ActionStep,
    Choice,
    ChoiceOption,
    DialogueScript,
    End,
    Pause,
    Say,
    Step,
    step_from_dict,
)

__all__ = [
    # Script
    "ActionStep",
    "Choice",
    "ChoiceOption",
    "DialogueScript",
    "End",
    "Pause",
    "Say",
    "Step",
    "step_from_dict",
    # Runner
    "DialogueInput",
    "DialogueRunner",
    "DialogueState",
    # Builder
    "ScriptBuilder",
    "parse_inline_speaker",
]
