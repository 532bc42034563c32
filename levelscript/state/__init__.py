"""Session state and persisted-record keys."""

from levelscript.state.flags import FlagKey, FlagNamespace
from levelscript.state.game_state import GameState, InteractionRecord, Transition

__all__ = [
    "FlagKey",
    "FlagNamespace",
    "GameState",
    "InteractionRecord",
    "Transition",
]
