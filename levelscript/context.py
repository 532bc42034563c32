"""
Per-level context handed to every component.

Nothing in the scripting core reaches for globals: the session builds a
LevelContext once per level entry and passes it to the registry, the
effect applier, the zone evaluator and the runners.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol

from levelscript.props import clamp

if TYPE_CHECKING:
    from engine.core.events import EventBus
    from levelscript.audio.controller import SceneAudio
    from levelscript.config import EngineConfig
    from levelscript.level.map import LevelMap
    from levelscript.npc.mover import NpcRegistry, NpcWaypointMover
    from levelscript.state.game_state import GameState


class FrameClock:
    """Monotonic frame time in milliseconds, advanced once per update."""

    def __init__(self, start_ms: float = 0.0):
        self.now_ms = float(start_ms)

    def advance(self, dt_ms: float) -> None:
        if dt_ms > 0:
            self.now_ms += dt_ms


@dataclass
class Actor:
    """The player-controlled body, as far as scripts care about it."""
    x: float = 0.0
    y: float = 0.0
    facing_x: float = 0.0
    facing_y: float = 1.0

    @property
    def position(self) -> tuple[float, float]:
        return (self.x, self.y)

    def set_position(self, x: float, y: float) -> None:
        self.x = x
        self.y = y

    def facing(self) -> tuple[float, float]:
        """Unit facing vector (down when unset)."""
        length = math.hypot(self.facing_x, self.facing_y)
        if length == 0:
            return (0.0, 1.0)
        return (self.facing_x / length, self.facing_y / length)


class Camera(Protocol):
    def shake(self, duration_ms: float, intensity: float) -> None: ...


class CameraShake:
    """Stacks shake requests: each one extends the current shake by its duration."""

    def __init__(self, camera: Optional[Camera], clock: FrameClock):
        self.camera = camera
        self.clock = clock
        self._end_at = 0.0

    def stack(self, duration_ms: float, intensity: float = 0.01) -> None:
        duration = clamp(float(duration_ms or 0), 0, 5000)
        if duration <= 0:
            return
        now = self.clock.now_ms
        self._end_at = max(self._end_at, now) + duration
        if self.camera is not None:
            self.camera.shake(self._end_at - now, intensity)

    def shake(self, duration_ms: float, intensity: float = 0.01) -> None:
        """One-off shake that does not extend the stacked one."""
        if duration_ms > 0 and self.camera is not None:
            self.camera.shake(duration_ms, intensity)


@dataclass
class LevelContext:
    """Shared services for one level visit."""
    scene: str
    state: GameState
    config: EngineConfig
    level: LevelMap
    clock: FrameClock
    actor: Actor
    audio: SceneAudio
    npcs: NpcRegistry
    mover: NpcWaypointMover
    shake: CameraShake
    bus: Optional[EventBus] = None
    prev_actor_pos: Optional[tuple[float, float]] = field(default=None)

    @property
    def now_ms(self) -> float:
        return self.clock.now_ms

    def publish(self, event_type, **data) -> None:
        if self.bus is not None:
            self.bus.publish(event_type, scene=self.scene, **data)

    def set_layer_visible(self, layer_name: str, visible: bool) -> None:
        """Show or hide a layer and mirror it into the persisted layer record."""
        layer = self.level.get_layer(layer_name)
        if layer is not None:
            layer.set_visible(visible)
        self.state.set_layer_hidden(self.scene, layer_name, not visible)
