"""
levelscript - data-driven interaction scripting for Tiled-authored levels.

Level designers attach properties to Tiled objects; levelscript turns
them into interactables, dialogue, effects, walk-into zones and NPC
movement, and remembers what happened across level visits.

Quick Start:
    from engine import AudioManager, EventBus, InputHandler
    from levelscript import EngineConfig, GameState, LevelMap, LevelSession

    bus = EventBus()
    config = EngineConfig.load("data/engine.json")
    state = GameState()
    level = LevelMap.load("maps/library.tmj")
    session = LevelSession("Library", level, state, AudioManager(bus), config,
                           input_handler=InputHandler(bus), event_bus=bus)
    session.enter()
"""

__version__ = "0.1.0"

from levelscript.config import EngineConfig
from levelscript.context import Actor, FrameClock, LevelContext
from levelscript.errors import (
    AuthoringError,
    LevelScriptError,
    ResourceUnavailable,
    RuntimeInconsistency,
    SaveError,
)
from levelscript.level.map import LevelMap
from levelscript.props import PropertyTable, numbered_keys, parse_props
from levelscript.save.manager import SaveManager
from levelscript.session import LevelSession
from levelscript.state.flags import FlagKey, FlagNamespace
from levelscript.state.game_state import GameState

__all__ = [
    # Session
    "LevelSession",
    "LevelContext",
    "Actor",
    "FrameClock",
    # State
    "GameState",
    "FlagKey",
    "FlagNamespace",
    "SaveManager",
    # Data
    "EngineConfig",
    "LevelMap",
    "PropertyTable",
    "numbered_keys",
    "parse_props",
    # Errors
    "LevelScriptError",
    "AuthoringError",
    "RuntimeInconsistency",
    "ResourceUnavailable",
    "SaveError",
]
