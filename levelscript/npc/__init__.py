"""Spawned NPCs and waypoint movement."""

from levelscript.npc.mover import Facing, Movement, NpcRegistry, NpcWaypointMover, SpawnedNpc

__all__ = [
    "Facing",
    "Movement",
    "NpcRegistry",
    "NpcWaypointMover",
    "SpawnedNpc",
]
