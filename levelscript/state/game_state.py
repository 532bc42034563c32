"""
Session state shared by every level.

GameState is a pydantic model owned by the session and passed
explicitly to every component. Its methods are the only sanctioned way
to mutate it; components never poke the dicts directly. Everything here
except the interaction lock serializes to JSON for saves.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from levelscript.state.flags import FlagKey


def _key(value: Any) -> str:
    return "" if value is None else str(value).strip()


class Transition(BaseModel):
    """Where the player came from on the last level change."""
    from_scene: str | None = None
    to_scene: str | None = None
    from_exit: str | None = None


class InteractionRecord(BaseModel):
    """Per-interaction counters, permanent disables and last choices."""
    counts: dict[str, int] = Field(default_factory=dict)
    disabled: dict[str, bool] = Field(default_factory=dict)
    choices: dict[str, int] = Field(default_factory=dict)


class GameState(BaseModel):
    """
    The shared session store.

    Attributes:
        score: Plain score total
        help_score: Signed help total; gates the true ending
        time_passed: Scene-visit counter, bumped when a level is left without progress
        real_time_ms: Elapsed play time, paused while dialogue is open
        inventory: Item name -> non-negative count
        flags: Semantic flags plus every FlagKey-addressed record
        interactions: Counters, disables and last choices per interaction id
        hidden_layers: Scene -> layer name -> hidden
        npcs_helped: Helped-marker name -> bool
        scene_progress: Scene -> progress made during the current visit
        transition: Last level change
        interact_lock_until: Frame-clock time before which world interaction is refused
    """

    model_config = ConfigDict(extra='forbid')

    score: int = 0
    help_score: int = 0
    time_passed: int = 0
    real_time_ms: float = 0.0
    inventory: dict[str, int] = Field(default_factory=dict)
    flags: dict[str, Any] = Field(default_factory=dict)
    interactions: InteractionRecord = Field(default_factory=InteractionRecord)
    hidden_layers: dict[str, dict[str, bool]] = Field(default_factory=dict)
    npcs_helped: dict[str, bool] = Field(default_factory=dict)
    scene_progress: dict[str, bool] = Field(default_factory=dict)
    transition: Transition = Field(default_factory=Transition)
    interact_lock_until: float = Field(default=0.0, exclude=True)

    # --- Inventory ---

    def add_item(self, item: str, count: int = 1) -> None:
        name = _key(item)
        if not name:
            return
        self.inventory[name] = max(0, self.inventory.get(name, 0) + int(count))

    def remove_item(self, item: str, count: int = 1) -> None:
        """Remove items; the count is clamped at zero."""
        name = _key(item)
        if not name:
            return
        self.inventory[name] = max(0, self.inventory.get(name, 0) - int(count))

    def has_item(self, item: str, count: int = 1) -> bool:
        name = _key(item)
        if not name:
            return False
        return self.inventory.get(name, 0) >= count

    def item_count(self, item: str) -> int:
        return self.inventory.get(_key(item), 0)

    # --- Interactions ---

    def increment_interaction_count(self, interaction_id: str) -> int:
        """Bump the use counter and return the new count (1 on first use)."""
        key = _key(interaction_id)
        if not key:
            return 0
        self.interactions.counts[key] = self.interactions.counts.get(key, 0) + 1
        return self.interactions.counts[key]

    def interaction_count(self, interaction_id: str) -> int:
        return self.interactions.counts.get(_key(interaction_id), 0)

    def disable_interaction(self, interaction_id: str) -> None:
        key = _key(interaction_id)
        if key:
            self.interactions.disabled[key] = True

    def enable_interaction(self, interaction_id: str) -> None:
        self.interactions.disabled.pop(_key(interaction_id), None)

    def is_interaction_disabled(self, interaction_id: str) -> bool:
        return self.interactions.disabled.get(_key(interaction_id)) is True

    def set_interaction_choice(self, interaction_id: str, choice: Any) -> None:
        """Record the last chosen option; only finite positive values are kept (truncated)."""
        key = _key(interaction_id)
        if not key or isinstance(choice, bool):
            return
        try:
            value = float(choice)
        except (TypeError, ValueError):
            return
        if not math.isfinite(value) or value <= 0:
            return
        self.interactions.choices[key] = int(value)

    def get_interaction_choice(self, interaction_id: str) -> int | None:
        return self.interactions.choices.get(_key(interaction_id))

    # --- Layers ---

    def set_layer_hidden(self, scene: str, layer: str, hidden: bool) -> None:
        scene_key, layer_name = _key(scene), _key(layer)
        if not scene_key or not layer_name:
            return
        self.hidden_layers.setdefault(scene_key, {})[layer_name] = bool(hidden)

    def is_layer_hidden(self, scene: str, layer: str) -> bool:
        return self.hidden_layers.get(_key(scene), {}).get(_key(layer)) is True

    def layer_overrides(self, scene: str) -> dict[str, bool]:
        return dict(self.hidden_layers.get(_key(scene), {}))

    # --- Help / score ---

    def add_help(self, amount: Any = 1) -> None:
        self.help_score += _as_int(amount)

    def add_score(self, amount: Any = 1) -> None:
        self.score += _as_int(amount)

    def mark_helped(self, name: str, value: bool = True) -> None:
        key = _key(name)
        if key:
            self.npcs_helped[key] = bool(value)

    def is_helped(self, name: str) -> bool:
        return self.npcs_helped.get(_key(name), False)

    # --- Flags ---

    def set_flag(self, name: str, value: Any = True) -> None:
        key = _key(name)
        if key:
            self.flags[key] = value

    def get_flag(self, name: str, default: Any = None) -> Any:
        return self.flags.get(_key(name), default)

    def is_flag_set(self, name: str) -> bool:
        return self.flags.get(_key(name)) is True

    def get_key(self, key: FlagKey, default: Any = None) -> Any:
        return self.flags.get(key.encode(), default)

    def set_key(self, key: FlagKey, value: Any = True) -> None:
        self.flags[key.encode()] = value

    def has_key(self, key: FlagKey) -> bool:
        return self.flags.get(key.encode()) is True

    def increment_key(self, key: FlagKey) -> int:
        """Counter stored under a FlagKey; returns the new value."""
        encoded = key.encode()
        value = _as_int(self.flags.get(encoded, 0)) + 1
        self.flags[encoded] = value
        return value

    def guard_once(self, key: FlagKey) -> bool:
        """
        Claim a one-time record.

        Returns:
            True exactly once per key; the caller applies its effect only then
        """
        if self.has_key(key):
            return False
        self.set_key(key, True)
        return True

    # --- Companions ---

    def set_companion(self, name: str, present: bool) -> None:
        key = _key(name).lower()
        if key:
            self.flags[f"{key}joined"] = bool(present)
            self.flags[f"{key}following"] = bool(present)

    def has_companion(self, name: str) -> bool:
        key = _key(name).lower()
        if not key:
            return False
        return self.flags.get(f"{key}joined") is True or self.flags.get(f"{key}following") is True

    # --- Time and interaction lock ---

    def tick_real_time(self, dt_ms: float) -> None:
        if dt_ms > 0:
            self.real_time_ms += dt_ms

    def lock_interact(self, now_ms: float, duration_ms: float = 220) -> None:
        """Refuse world interaction until now + duration (never shortens an existing lock)."""
        self.interact_lock_until = max(self.interact_lock_until, now_ms + duration_ms)

    def can_world_interact(self, now_ms: float) -> bool:
        return now_ms >= self.interact_lock_until

    # --- Scene progress ---

    def set_transition(self, from_scene: str | None, to_scene: str | None, from_exit: str | None = None) -> None:
        self.transition = Transition(from_scene=from_scene, to_scene=to_scene, from_exit=from_exit)

    def track_scene(self, scene: str) -> None:
        """Start tracking progress for a scene (idempotent)."""
        self.scene_progress.setdefault(_key(scene), False)

    def mark_scene_progress(self, scene: str) -> None:
        key = _key(scene)
        if key in self.scene_progress:
            self.scene_progress[key] = True

    def on_leave_scene(self, scene: str) -> None:
        """A visit that made no progress costs one unit of time_passed."""
        key = _key(scene)
        if key in self.scene_progress:
            if not self.scene_progress[key]:
                self.time_passed += 1
            self.scene_progress[key] = False

    def reset(self) -> None:
        """New game: restore every field to its default."""
        fresh = GameState()
        for name in type(self).model_fields:
            setattr(self, name, getattr(fresh, name))


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return int(number) if math.isfinite(number) else 0
