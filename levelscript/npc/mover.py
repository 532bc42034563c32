"""
NPC registry and waypoint movement.

Spawned NPCs are registered by id when a level is built. The registry
reapplies persisted position/flip overrides on registration and writes
them back on level exit; the mover walks NPCs along named points.

Usage:
    registry = NpcRegistry(state, "Library")
    registry.register(SpawnedNpc("librarian", 120, 80))
    mover = NpcWaypointMover(registry, level, config)
    mover.move_along_named("librarian", ["desk", "door"])
    ...
    mover.update(dt_ms)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterator, Optional

from engine.core.events import LevelEvent
from levelscript.config import EngineConfig
from levelscript.errors import RuntimeInconsistency
from levelscript.state.flags import FlagKey, FlagNamespace

if TYPE_CHECKING:
    from engine.core.events import EventBus
    from levelscript.level.map import LevelMap
    from levelscript.state.game_state import GameState

logger = logging.getLogger(__name__)

Point = tuple[float, float]


class Facing(Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"

    @staticmethod
    def from_vector(dx: float, dy: float) -> Facing:
        """Facing along the dominant axis (horizontal wins ties)."""
        if abs(dx) >= abs(dy):
            return Facing.RIGHT if dx > 0 else Facing.LEFT
        return Facing.DOWN if dy > 0 else Facing.UP


@dataclass
class SpawnedNpc:
    """A level NPC as the scripting core sees it."""
    npc_id: str
    x: float = 0.0
    y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    facing: Facing = Facing.DOWN
    flip_y: bool = False
    anim: str = ""
    destroyed: bool = False

    @property
    def position(self) -> Point:
        return (self.x, self.y)

    def set_position(self, x: float, y: float) -> None:
        self.x = x
        self.y = y

    def set_velocity(self, vx: float, vy: float) -> None:
        self.vx = vx
        self.vy = vy

    def set_flip_y(self, flip: bool) -> None:
        self.flip_y = bool(flip)

    def play_anim(self, name: str) -> None:
        self.anim = name

    def destroy(self) -> None:
        self.destroyed = True
        self.set_velocity(0.0, 0.0)


class NpcRegistry:
    """
    Spawned NPCs of the current level, keyed by id.

    Lookups try the exact id first, then a case-insensitive match.
    """

    def __init__(self, state: GameState, scene: str):
        self.state = state
        self.scene = scene
        self._npcs: dict[str, SpawnedNpc] = {}

    # Persistence keys

    def _position_key(self, npc_id: str) -> FlagKey:
        return FlagKey.of(FlagNamespace.NPC_POSITION, self.scene, npc_id)

    def _flip_key(self, npc_id: str) -> FlagKey:
        return FlagKey.of(FlagNamespace.NPC_FLIP, self.scene, npc_id)

    @staticmethod
    def removed_key(npc_id: str) -> FlagKey:
        return FlagKey.of(FlagNamespace.NPC_REMOVED, "", npc_id)

    def register(self, npc: SpawnedNpc) -> bool:
        """
        Add an NPC and apply its persisted overrides.

        Returns:
            False if the NPC was permanently removed earlier (it is destroyed)
        """
        if self.state.has_key(self.removed_key(npc.npc_id)):
            npc.destroy()
            return False

        if npc.npc_id in self._npcs:
            logger.warning("Duplicate NPC id '%s' in scene %s; keeping the first", npc.npc_id, self.scene)
            return False

        pos = self.state.get_key(self._position_key(npc.npc_id))
        if isinstance(pos, dict) and "x" in pos and "y" in pos:
            npc.set_position(float(pos["x"]), float(pos["y"]))
        if self.state.get_key(self._flip_key(npc.npc_id)) is True:
            npc.set_flip_y(True)

        self._npcs[npc.npc_id] = npc
        return True

    def get(self, npc_id: str) -> SpawnedNpc | None:
        npc_id = (npc_id or "").strip()
        if not npc_id:
            return None
        npc = self._npcs.get(npc_id)
        if npc is not None:
            return npc
        lowered = npc_id.lower()
        for key, candidate in self._npcs.items():
            if key.lower() == lowered:
                return candidate
        return None

    def require(self, npc_id: str) -> SpawnedNpc:
        """
        Raises:
            RuntimeInconsistency: If no NPC with that id is registered
        """
        npc = self.get(npc_id)
        if npc is None:
            raise RuntimeInconsistency(f"NPC not registered: '{npc_id}' (scene {self.scene})")
        return npc

    def remove(self, npc_id: str) -> bool:
        """Destroy an NPC and remember it stays gone on every later visit."""
        self.state.set_key(self.removed_key(npc_id), True)
        npc = self.get(npc_id)
        if npc is None:
            return False
        npc.destroy()
        del self._npcs[npc.npc_id]
        return True

    def set_flip(self, npc_id: str, flip: bool = True) -> bool:
        npc = self.get(npc_id)
        if npc is None:
            logger.warning("Cannot flip unregistered NPC '%s' (scene %s)", npc_id, self.scene)
            return False
        npc.set_flip_y(flip)
        self.state.set_key(self._flip_key(npc.npc_id), bool(flip))
        return True

    def persist_position(self, npc_id: str, x: float, y: float) -> None:
        npc = self.get(npc_id)
        key_id = npc.npc_id if npc is not None else npc_id
        self.state.set_key(self._position_key(key_id), {"x": x, "y": y})

    def persist_all(self, skip: Optional[set[str]] = None) -> None:
        """Write position and flip of every live NPC (on level exit)."""
        for npc_id, npc in self._npcs.items():
            if skip and npc_id in skip:
                continue
            self.state.set_key(self._position_key(npc_id), {"x": npc.x, "y": npc.y})
            self.state.set_key(self._flip_key(npc_id), npc.flip_y)

    def __iter__(self) -> Iterator[SpawnedNpc]:
        return iter(list(self._npcs.values()))

    def __len__(self) -> int:
        return len(self._npcs)

    def __contains__(self, npc_id: object) -> bool:
        return isinstance(npc_id, str) and self.get(npc_id) is not None


@dataclass
class Movement:
    """Per-NPC walk state; cleared the tick the last point is reached."""
    points: list[Point]
    index: int = 0
    speed: float = 40.0
    arrive: float = 6.0
    face_while_moving: bool = True


class NpcWaypointMover:
    """
    Walks registered NPCs through ordered points.

    Each tick the NPC heads for its current point at constant speed.
    Within the arrive tolerance it snaps onto the point and targets the
    next; on the last point it stops and its movement state is dropped
    in the same tick, so interactions bound to it re-enable at once.
    """

    def __init__(
        self,
        registry: NpcRegistry,
        level: Optional[LevelMap] = None,
        config: Optional[EngineConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.level = level
        self.config = config or EngineConfig()
        self.event_bus = event_bus
        self._moves: dict[str, Movement] = {}

    def is_moving(self, npc_id: str) -> bool:
        npc = self.registry.get(npc_id)
        return npc is not None and npc.npc_id in self._moves

    @property
    def moving_ids(self) -> set[str]:
        return set(self._moves)

    def move_along(
        self,
        npc_id: str,
        points: list[Point],
        speed: Optional[float] = None,
        arrive: Optional[float] = None,
        face_while_moving: bool = True,
    ) -> bool:
        """
        Start walking an NPC through ``points``.

        The final point is persisted immediately, so a level re-entry
        places the NPC at its destination without replaying the walk.

        Returns:
            False if the NPC is not registered or there are no points
        """
        npc = self.registry.get(npc_id)
        if npc is None:
            logger.warning("[Waypoints] NPC not registered: '%s' (scene %s)", npc_id, self.registry.scene)
            return False
        if not points:
            logger.warning("[Waypoints] No points resolved for NPC '%s'", npc_id)
            return False

        cfg = self.config.npc
        tolerance = cfg.arrive_dist if arrive is None or arrive <= 0 else arrive
        self._moves[npc.npc_id] = Movement(
            points=list(points),
            speed=max(1.0, float(speed if speed is not None else cfg.speed)),
            arrive=max(cfg.min_arrive_dist, tolerance),
            face_while_moving=face_while_moving,
        )
        final_x, final_y = points[-1]
        self.registry.persist_position(npc.npc_id, final_x, final_y)
        return True

    def resolve_points(self, names: list[str], layer: Optional[str] = None) -> list[Point]:
        """Named points to coordinates; missing names are logged and skipped."""
        layer = layer or self.config.layers.points
        points: list[Point] = []
        for name in names:
            point = self.level.get_point(layer, name) if self.level is not None else None
            if point is None:
                logger.warning("[Waypoints] Point '%s' not found in layer '%s'", name, layer)
                continue
            points.append(point)
        return points

    def move_along_named(
        self,
        npc_id: str,
        names: list[str],
        layer: Optional[str] = None,
        speed: Optional[float] = None,
        arrive: Optional[float] = None,
    ) -> bool:
        return self.move_along(npc_id, self.resolve_points(names, layer), speed=speed, arrive=arrive)

    def move_to_point(
        self,
        npc_id: str,
        point_name: str,
        layer: Optional[str] = None,
        speed: Optional[float] = None,
    ) -> bool:
        return self.move_along_named(npc_id, [point_name], layer=layer, speed=speed)

    def stop(self, npc_id: str) -> None:
        npc = self.registry.get(npc_id)
        if npc is None:
            return
        if self._moves.pop(npc.npc_id, None) is not None:
            npc.set_velocity(0.0, 0.0)
            npc.play_anim(f"idle_{npc.facing.value}")

    def update(self, dt_ms: float) -> None:
        """Advance every active movement by one tick."""
        for npc_id in list(self._moves):
            self._step(npc_id, self._moves[npc_id], dt_ms)

    def _step(self, npc_id: str, move: Movement, dt_ms: float) -> None:
        npc = self.registry.get(npc_id)
        if npc is None or npc.destroyed:
            del self._moves[npc_id]
            return

        if move.index >= len(move.points):
            self._finish(npc_id, npc)
            return

        tx, ty = move.points[move.index]
        dx, dy = tx - npc.x, ty - npc.y
        dist = math.hypot(dx, dy)

        if dist <= move.arrive or (abs(dx) <= move.arrive and abs(dy) <= move.arrive):
            self._arrive(npc_id, npc, move, tx, ty)
            return

        ux, uy = dx / dist, dy / dist
        npc.set_velocity(ux * move.speed, uy * move.speed)
        if move.face_while_moving:
            npc.facing = Facing.from_vector(dx, dy)
        npc.play_anim(f"walk_{npc.facing.value}")

        step = min(dist, move.speed * max(0.0, dt_ms) / 1000.0)
        if dist - step <= move.arrive:
            self._arrive(npc_id, npc, move, tx, ty)
            return
        npc.set_position(npc.x + ux * step, npc.y + uy * step)

    def _arrive(self, npc_id: str, npc: SpawnedNpc, move: Movement, tx: float, ty: float) -> None:
        """Snap onto the current point; the final point ends the walk in this same tick."""
        npc.set_position(tx, ty)
        move.index += 1
        if move.index >= len(move.points):
            self._finish(npc_id, npc)

    def _finish(self, npc_id: str, npc: SpawnedNpc) -> None:
        npc.set_velocity(0.0, 0.0)
        npc.play_anim(f"idle_{npc.facing.value}")
        del self._moves[npc_id]
        self.registry.persist_position(npc_id, npc.x, npc.y)
        if self.event_bus:
            self.event_bus.publish(LevelEvent.NPC_ARRIVED, npc_id=npc_id, x=npc.x, y=npc.y)
