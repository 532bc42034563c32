"""
Input action definitions.

Actions abstract raw input (keys, buttons) into semantic actions.
Level scripts and the dialogue runner check Actions, never raw keys.

Usage:
    if input.is_action_just_pressed(Action.INTERACT):
        ...
"""

from enum import Enum, auto

import pygame


class Action(Enum):
    """Semantic input actions."""

    # Dialogue / menu navigation
    MENU_UP = auto()
    MENU_DOWN = auto()
    CONFIRM = auto()
    CANCEL = auto()

    # Movement
    MOVE_UP = auto()
    MOVE_DOWN = auto()
    MOVE_LEFT = auto()
    MOVE_RIGHT = auto()

    # World
    INTERACT = auto()


DEFAULT_KEY_BINDINGS: dict[Action, list[int]] = {
    Action.MENU_UP: [pygame.K_UP, pygame.K_w],
    Action.MENU_DOWN: [pygame.K_DOWN, pygame.K_s],
    Action.CONFIRM: [pygame.K_z, pygame.K_RETURN, pygame.K_SPACE],
    Action.CANCEL: [pygame.K_ESCAPE],

    Action.MOVE_UP: [pygame.K_UP, pygame.K_w],
    Action.MOVE_DOWN: [pygame.K_DOWN, pygame.K_s],
    Action.MOVE_LEFT: [pygame.K_LEFT, pygame.K_a],
    Action.MOVE_RIGHT: [pygame.K_RIGHT, pygame.K_d],

    Action.INTERACT: [pygame.K_z, pygame.K_e],
}
