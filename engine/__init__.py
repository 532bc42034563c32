"""
Engine plumbing for levelscript.

The collaborators the scripting core talks to through narrow
interfaces: the typed event bus, semantic input actions and the pygame
audio manager.

Quick Start:
    from engine import EventBus, InputHandler, AudioManager

    bus = EventBus()
    input = InputHandler(bus)
    audio = AudioManager(bus, assets_path="assets")
"""

__version__ = "0.1.0"

from engine.core import (
    EventBus,
    Event,
    InteractionEvent,
    DialogueEvent,
    AudioEvent,
    LevelEvent,
    Action,
)
from engine.input import InputHandler
from engine.audio import AudioManager, SoundHandle

__all__ = [
    # Events
    "EventBus",
    "Event",
    "InteractionEvent",
    "DialogueEvent",
    "AudioEvent",
    "LevelEvent",
    # Input
    "InputHandler",
    "Action",
    # Audio
    "AudioManager",
    "SoundHandle",
]
