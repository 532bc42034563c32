"""
Core engine module.

Exports:
- EventBus, Event and the event type enums
- Action: Input actions
"""

from engine.core.events import (
    EventBus,
    Event,
    InteractionEvent,
    DialogueEvent,
    AudioEvent,
    LevelEvent,
)
from engine.core.actions import Action

__all__ = [
    # Events
    "EventBus",
    "Event",
    "InteractionEvent",
    "DialogueEvent",
    "AudioEvent",
    "LevelEvent",
    # Input
    "Action",
]
