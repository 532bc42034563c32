"""Tiled level model."""

from levelscript.level.map import Collider, LevelMap, LevelObject, ObjectLayer, TileLayer

__all__ = [
    "Collider",
    "LevelMap",
    "LevelObject",
    "ObjectLayer",
    "TileLayer",
]
