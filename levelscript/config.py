"""
Engine configuration.

All tunables of the scripting core live in one pydantic model, split
into sections. Defaults reproduce the shipped game; a JSON file only
needs to name what it changes.

Expected format:
{
    "dialogue": {"typing_interval_ms": 18, "input_cooldown_ms": 500},
    "zones": {"deny_cooldown_ms": 600},
    "sounds": {"door_open": "sfx/door.ogg"},
    "scene_music": {"Library": {"key": "library_theme", "volume": 0.5}},
    "layers": {"interactions": "Interactions", "colliders": "Colliders"}
}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class _Section(BaseModel):
    model_config = ConfigDict(extra='forbid', validate_assignment=True)


class DialogueConfig(_Section):
    typing_interval_ms: float = Field(default=18, ge=0)
    input_cooldown_ms: float = Field(default=500, ge=0)
    choice_confirm_delay_ms: float = Field(default=250, ge=0)
    navigation_cooldown_ms: float = Field(default=120, ge=0)
    default_pause_ms: float = Field(default=400, ge=0)
    close_interact_lock_ms: float = Field(default=240, ge=0)
    follower_pause_ms: int = Field(default=250, ge=0, le=5000)
    default_deny_text: str = "You can't do that yet."


class InteractionConfig(_Section):
    default_prompt: str = "Interact"
    max_dist: float = 22
    look_max_dist: float = 44
    look_min_dot: float = 0.65
    facing_weight: float = 6
    interact_lock_ms: float = 220
    max_choices: int = Field(default=6, ge=1)
    sfx_base_pct: int = 20
    sfx_step_pct: int = 5
    sfx_max_pct: int = 80


class ZoneConfig(_Section):
    deny_cooldown_ms: float = 600
    deny_push: float = 12
    deny_shake_intensity: float = 0.01
    deny_text: str = "You can't go there."
    zone_volume: float = Field(default=0.6, ge=0, le=1)
    duck_factor: float = Field(default=0.35, ge=0, le=1)
    fade_steps: int = Field(default=8, ge=1)
    min_fade_step_ms: float = 10
    ambience_volume: float = Field(default=0.35, ge=0, le=1)


class NpcConfig(_Section):
    speed: float = Field(default=40, gt=0)
    arrive_dist: float = Field(default=2, ge=0)
    min_arrive_dist: float = Field(default=6, ge=0)


class MusicConfig(_Section):
    fade_ms: int = Field(default=600, ge=0, le=5000)
    volume: float = Field(default=0.6, ge=0, le=1)


class SceneMusic(_Section):
    key: str
    volume: float = Field(default=0.6, ge=0, le=1)
    loop: bool = True


class LayerNames(_Section):
    interactions: str = "Interactions"
    colliders: str = "Colliders"
    points: str = "Points"
    npcs: str = "NPCs"


class EndingConfig(_Section):
    world_end_ms: float = 8 * 60 * 1000
    true_help_threshold: int = 88
    true_items: list[list[str]] = Field(default_factory=lambda: [["hairribbon"], ["loveletter"]])
    true_item_flags: dict[str, str] = Field(default_factory=lambda: {"hairribbon": "hasHairpin"})
    true_flags: list[str] = Field(default_factory=lambda: ["minesweeperBoardCleared"])


class EngineConfig(_Section):
    """
    Complete engine configuration.

    Usage:
        config = EngineConfig.load("game/data/engine.json")
        config.dialogue.typing_interval_ms
    """
    tile_size: int = Field(default=16, gt=0)
    companions: list[str] = Field(default_factory=lambda: ["saga", "aloise"])
    dialogue: DialogueConfig = Field(default_factory=DialogueConfig)
    interaction: InteractionConfig = Field(default_factory=InteractionConfig)
    zones: ZoneConfig = Field(default_factory=ZoneConfig)
    npc: NpcConfig = Field(default_factory=NpcConfig)
    music: MusicConfig = Field(default_factory=MusicConfig)
    layers: LayerNames = Field(default_factory=LayerNames)
    endings: EndingConfig = Field(default_factory=EndingConfig)
    sounds: dict[str, str] = Field(default_factory=dict)
    scene_music: dict[str, SceneMusic] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: str | Path) -> EngineConfig:
        """
        Load configuration from a JSON file.

        A missing file gives the defaults. Unreadable or invalid content
        is logged and also gives the defaults.
        """
        config_file = Path(path)
        if not config_file.exists():
            logger.info("No engine config at %s, using defaults", config_file)
            return cls()

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            return cls.model_validate(data)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read engine config %s: %s", config_file, e)
        except ValidationError as e:
            logger.error("Invalid engine config %s: %s", config_file, e)
        return cls()
