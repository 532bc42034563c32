"""
Typed event bus for decoupled communication.

Uses Enums for event types to prevent magic strings. Scripted
interactions, dialogue and audio publish their lifecycle here so that
presentation layers (HUD, debug overlay, analytics) can follow along
without the scripting core knowing about them.

Usage:
    bus = EventBus()
    bus.subscribe(DialogueEvent.ENDED, on_dialogue_ended)
    bus.publish(DialogueEvent.ENDED, completed=True)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable
from weakref import WeakMethod, ref

logger = logging.getLogger(__name__)


class InteractionEvent(Enum):
    """Interaction lifecycle events."""
    REGISTERED = auto()
    TRIGGERED = auto()
    DENIED = auto()
    EFFECTS_APPLIED = auto()
    ZONE_ENTERED = auto()
    ZONE_EXITED = auto()


class DialogueEvent(Enum):
    """Dialogue runner events."""
    STARTED = auto()
    LINE = auto()
    CHOICE_SHOWN = auto()
    CHOICE_SELECTED = auto()
    ENDED = auto()


class AudioEvent(Enum):
    """Audio events."""
    MUSIC_STARTED = auto()
    MUSIC_CROSSFADE = auto()
    MUSIC_DUCKED = auto()
    SFX_PLAYED = auto()


class LevelEvent(Enum):
    """Level session events."""
    ENTERED = auto()
    EXITED = auto()
    NPC_ARRIVED = auto()


@dataclass
class Event:
    """
    Event data container.

    Attributes:
        type: The event type (Enum member)
        data: Dictionary of event-specific data
        consumed: Whether the event has been handled
    """
    type: Enum
    data: dict[str, Any] = field(default_factory=dict)
    consumed: bool = False

    def consume(self) -> None:
        """Mark event as consumed (stops propagation)."""
        self.consumed = True

    def get(self, key: str, default: Any = None) -> Any:
        """Get event data by key."""
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]


EventHandler = Callable[[Event], None]


class EventBus:
    """
    Central event bus for publish/subscribe messaging.

    Handlers are ordered by priority (highest first), may be one-shot and
    are held weakly by default. Events published from inside a handler
    are queued and dispatched after the current one finishes, so a frame
    never re-enters a handler list it is iterating.
    """

    def __init__(self):
        self._handlers: dict[Enum, list[tuple[int, Any, bool]]] = {}
        self._event_queue: list[Event] = []
        self._is_publishing = False

    def subscribe(
        self,
        event_type: Enum,
        handler: EventHandler,
        priority: int = 0,
        one_shot: bool = False,
        weak: bool = True,
    ) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: The event type to listen for
            handler: Callback function(event: Event)
            priority: Higher priority handlers are called first (default 0)
            one_shot: If True, handler is removed after first call
            weak: If True, use weak reference (handler auto-removed if deleted)
        """
        if weak:
            handler_ref = WeakMethod(handler) if hasattr(handler, '__self__') else ref(handler)
        else:
            handler_ref = handler

        handlers = self._handlers.setdefault(event_type, [])
        insert_idx = len(handlers)
        for i, (p, _, _) in enumerate(handlers):
            if priority > p:
                insert_idx = i
                break
        handlers.insert(insert_idx, (priority, handler_ref, one_shot))

    def unsubscribe(self, event_type: Enum, handler: EventHandler) -> None:
        """Remove a handler from an event type."""
        if event_type not in self._handlers:
            return
        self._handlers[event_type] = [
            entry for entry in self._handlers[event_type]
            if self._get_handler(entry[1]) != handler
        ]

    def publish(self, event_type: Enum, **data: Any) -> Event:
        """
        Publish an event.

        Args:
            event_type: The event type
            **data: Event data as keyword arguments

        Returns:
            The Event object (check .consumed to see if it was handled)
        """
        event = Event(type=event_type, data=data)
        if self._is_publishing:
            self._event_queue.append(event)
        else:
            self._dispatch(event)
        return event

    def clear(self, event_type: Enum | None = None) -> None:
        """Clear handlers for one event type, or all of them."""
        if event_type is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event_type, None)

    def _dispatch(self, event: Event) -> None:
        handlers = self._handlers.get(event.type)
        if handlers:
            self._is_publishing = True
            to_remove = []
            try:
                for i, (_, handler_ref, one_shot) in enumerate(handlers):
                    handler = self._get_handler(handler_ref)
                    if handler is None:
                        to_remove.append(i)
                        continue

                    try:
                        handler(event)
                    except Exception:
                        logger.exception("Error in event handler for %s", event.type)

                    if one_shot:
                        to_remove.append(i)
                    if event.consumed:
                        break
            finally:
                for i in reversed(to_remove):
                    handlers.pop(i)
                self._is_publishing = False

        while self._event_queue and not self._is_publishing:
            self._dispatch(self._event_queue.pop(0))

    def _get_handler(self, handler_ref: Any) -> EventHandler | None:
        if isinstance(handler_ref, (ref, WeakMethod)):
            return handler_ref()
        return handler_ref
