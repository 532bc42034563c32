"""
Ending predicates.

The run ends either when real play time runs out or when the player
reaches an epilogue trigger; which epilogue plays depends on help score,
collected items and companions.
"""

from __future__ import annotations

from enum import Enum

from levelscript.config import EndingConfig, EngineConfig
from levelscript.state.game_state import GameState


class Epilogue(Enum):
    MINUS_HELP = "minus_help"
    PARTY = "party"
    TRUE = "true"
    NORMAL = "normal"


def is_world_ending(state: GameState, config: EndingConfig | None = None) -> bool:
    config = config or EndingConfig()
    return state.real_time_ms >= config.world_end_ms


def _has_any_item(state: GameState, names: list[str]) -> bool:
    wanted = {n.lower() for n in names}
    return any(count > 0 and item.lower() in wanted for item, count in state.inventory.items())


def is_true_ready(state: GameState, config: EndingConfig | None = None) -> bool:
    """Every required item (or its substitute flag), every required flag and enough help."""
    config = config or EndingConfig()
    for alternatives in config.true_items:
        if _has_any_item(state, alternatives):
            continue
        substitutes = [config.true_item_flags[a] for a in alternatives if a in config.true_item_flags]
        if not any(state.is_flag_set(flag) for flag in substitutes):
            return False
    if not all(state.is_flag_set(flag) for flag in config.true_flags):
        return False
    return state.help_score >= config.true_help_threshold


def select_epilogue(state: GameState, config: EngineConfig | None = None) -> Epilogue:
    config = config or EngineConfig()
    if state.help_score < 0:
        return Epilogue.MINUS_HELP
    if config.companions and all(state.has_companion(name) for name in config.companions):
        return Epilogue.PARTY
    if is_true_ready(state, config.endings):
        return Epilogue.TRUE
    return Epilogue.NORMAL
