"""
Interactables, their effects and the runner that ties them to dialogue.

Exports:
- InteractionRegistry, Interactable: Level interactables and selection
- EffectApplier, EffectEvent: Completion and choice effects
- EffectBundle, compile_effects: Typed effect descriptors
- InteractionRunner: Use an interactable
"""

from levelscript.interaction.effects import EffectApplier, EffectEvent
from levelscript.interaction.registry import Interactable, InteractionRegistry
from levelscript.interaction.runner import InteractionRunner
from levelscript.interaction.schema import EffectBundle, InteractionTarget, compile_effects

__all__ = [
    "EffectApplier",
    "EffectBundle",
    "EffectEvent",
    "Interactable",
    "InteractionRegistry",
    "InteractionRunner",
    "InteractionTarget",
    "compile_effects",
]
