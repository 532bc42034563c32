"""
Input handler with action-based abstraction.

Translates raw pygame key events into semantic Actions and tracks
per-frame edges, which is what the world-interaction key and the
dialogue runner consume.

Usage:
    for event in pygame.event.get():
        input.process_event(event)
    input.update()

    if input.is_action_just_pressed(Action.INTERACT):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import pygame

from engine.core.actions import Action, DEFAULT_KEY_BINDINGS
from engine.core.events import EventBus


class InputEvent(Enum):
    """Input-specific events."""
    ACTION_PRESSED = "input.action_pressed"
    ACTION_RELEASED = "input.action_released"


@dataclass
class InputState:
    """Complete input state for current frame."""
    actions_pressed: set[Action] = field(default_factory=set)
    actions_just_pressed: set[Action] = field(default_factory=set)
    actions_just_released: set[Action] = field(default_factory=set)

    keys_pressed: set[int] = field(default_factory=set)
    keys_just_pressed: set[int] = field(default_factory=set)


class InputHandler:
    """
    Handles keyboard input processing.

    Raw key codes are mapped to Actions through rebindable key bindings.
    An Action stays pressed while any of its bound keys is held.
    """

    def __init__(self, event_bus: EventBus | None = None):
        self.event_bus = event_bus

        self._state = InputState()
        self._prev_actions: set[Action] = set()
        self._prev_keys: set[int] = set()

        self._key_bindings = {action: list(keys) for action, keys in DEFAULT_KEY_BINDINGS.items()}
        self._reverse_key_bindings: dict[int, list[Action]] = {}
        self._rebuild_reverse_bindings()

    def _rebuild_reverse_bindings(self) -> None:
        """Build reverse lookup: key -> actions."""
        self._reverse_key_bindings.clear()
        for action, keys in self._key_bindings.items():
            for key in keys:
                self._reverse_key_bindings.setdefault(key, []).append(action)

    # Public API

    def is_action_pressed(self, action: Action) -> bool:
        """Check if an action is currently held down."""
        return action in self._state.actions_pressed

    def is_action_just_pressed(self, action: Action) -> bool:
        """Check if an action was just pressed this frame."""
        return action in self._state.actions_just_pressed

    def is_action_just_released(self, action: Action) -> bool:
        """Check if an action was just released this frame."""
        return action in self._state.actions_just_released

    def is_key_just_pressed(self, key: int) -> bool:
        """Check if a raw key was just pressed."""
        return key in self._state.keys_just_pressed

    def get_movement_vector(self) -> tuple[float, float]:
        """
        Get normalized movement vector from input.

        Returns:
            (x, y) tuple; diagonals are scaled to unit length
        """
        x = 0.0
        y = 0.0
        if self.is_action_pressed(Action.MOVE_LEFT):
            x -= 1.0
        if self.is_action_pressed(Action.MOVE_RIGHT):
            x += 1.0
        if self.is_action_pressed(Action.MOVE_UP):
            y -= 1.0
        if self.is_action_pressed(Action.MOVE_DOWN):
            y += 1.0

        if x != 0 and y != 0:
            x *= 0.7071  # 1/sqrt(2)
            y *= 0.7071

        return (x, y)

    # Key binding management

    def bind_key(self, action: Action, key: int) -> None:
        """Add a key binding for an action."""
        keys = self._key_bindings.setdefault(action, [])
        if key not in keys:
            keys.append(key)
        self._rebuild_reverse_bindings()

    def unbind_key(self, action: Action, key: int) -> None:
        """Remove a key binding for an action."""
        if key in self._key_bindings.get(action, []):
            self._key_bindings[action].remove(key)
        self._rebuild_reverse_bindings()

    def get_bindings(self, action: Action) -> list[int]:
        """Get all key bindings for an action."""
        return list(self._key_bindings.get(action, []))

    # Frame update

    def process_event(self, event: pygame.event.Event) -> None:
        """Process a pygame event."""
        if event.type == pygame.KEYDOWN:
            self._on_key_down(event.key)
        elif event.type == pygame.KEYUP:
            self._on_key_up(event.key)

    def update(self) -> None:
        """
        Update input state for new frame.

        Call this once per frame after processing events.
        """
        self._state.actions_just_pressed = self._state.actions_pressed - self._prev_actions
        self._state.actions_just_released = self._prev_actions - self._state.actions_pressed
        self._state.keys_just_pressed = self._state.keys_pressed - self._prev_keys

        if self.event_bus:
            for action in self._state.actions_just_pressed:
                self.event_bus.publish(InputEvent.ACTION_PRESSED, action=action)
            for action in self._state.actions_just_released:
                self.event_bus.publish(InputEvent.ACTION_RELEASED, action=action)

        self._prev_actions = set(self._state.actions_pressed)
        self._prev_keys = set(self._state.keys_pressed)

    def _on_key_down(self, key: int) -> None:
        self._state.keys_pressed.add(key)
        for action in self._reverse_key_bindings.get(key, []):
            self._state.actions_pressed.add(action)

    def _on_key_up(self, key: int) -> None:
        self._state.keys_pressed.discard(key)
        for action in self._reverse_key_bindings.get(key, []):
            # Only release if no other key for that action is still held
            still_pressed = any(
                other != key and other in self._state.keys_pressed
                for other in self._key_bindings.get(action, [])
            )
            if not still_pressed:
                self._state.actions_pressed.discard(action)
