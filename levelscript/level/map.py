"""
Level model - Tiled JSON maps.

Supports the Tiled JSON format (.tmj/.json). Only what the scripting
core needs is modelled: tile layers (visibility, tile removal), object
layers (nested inside group layers too), named points and static
colliders built from a collider object layer.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any, Iterator, Optional

import jsonschema
from pydantic import BaseModel, ConfigDict, ValidationError

from levelscript.errors import AuthoringError
from levelscript.props import PropertyTable

logger = logging.getLogger(__name__)

FLIP_MASK = 0x80000000 | 0x40000000 | 0x20000000

TILED_MAP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["layers"],
    "properties": {
        "width": {"type": "integer", "minimum": 0},
        "height": {"type": "integer", "minimum": 0},
        "tilewidth": {"type": "integer", "minimum": 1},
        "tileheight": {"type": "integer", "minimum": 1},
        "layers": {"type": "array", "items": {"$ref": "#/definitions/layer"}},
    },
    "definitions": {
        "layer": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "name": {"type": "string"},
                "type": {"enum": ["tilelayer", "objectgroup", "group", "imagelayer"]},
                "visible": {"type": "boolean"},
                "data": {"type": "array", "items": {"type": "integer"}},
                "objects": {"type": "array", "items": {"type": "object"}},
                "layers": {"type": "array", "items": {"$ref": "#/definitions/layer"}},
                "properties": {"type": ["array", "object"]},
            },
        }
    },
}


class LevelObject(BaseModel):
    """A Tiled object. Its property table is parsed once and cached."""

    model_config = ConfigDict(extra='ignore')

    id: int = 0
    name: str = ""
    type: str = ""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    point: bool = False
    visible: bool = True
    properties: Any = None

    @cached_property
    def props(self) -> PropertyTable:
        return PropertyTable.from_object(self)

    @property
    def script_id(self) -> str:
        """The id scripts address this object by: the ``id`` property, else the object name."""
        return self.props.text("id") or self.name.strip()

    @property
    def is_point(self) -> bool:
        return self.point or (self.width <= 0 and self.height <= 0)

    @property
    def center(self) -> tuple[float, float]:
        if self.is_point:
            return (self.x, self.y)
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass
class TileLayer:
    """A grid of tile GIDs with a visibility switch."""
    name: str
    width: int
    height: int
    tiles: list[int] = field(default_factory=list)
    visible: bool = True
    properties: PropertyTable = field(default_factory=PropertyTable)

    def set_visible(self, visible: bool) -> None:
        self.visible = bool(visible)

    def get_tile_at(self, tx: int, ty: int) -> int:
        if not (0 <= tx < self.width and 0 <= ty < self.height):
            return 0
        idx = ty * self.width + tx
        return self.tiles[idx] & ~FLIP_MASK if idx < len(self.tiles) else 0

    def remove_tile_at(self, tx: int, ty: int) -> bool:
        """Clear a tile. Returns False when there was none."""
        if not self.get_tile_at(tx, ty):
            return False
        self.tiles[ty * self.width + tx] = 0
        return True


@dataclass
class ObjectLayer:
    name: str
    objects: list[LevelObject] = field(default_factory=list)
    visible: bool = True
    properties: PropertyTable = field(default_factory=PropertyTable)

    def set_visible(self, visible: bool) -> None:
        self.visible = bool(visible)


@dataclass
class Collider:
    """A static rectangular collider built from the collider layer."""
    collider_id: str
    x: float
    y: float
    width: float
    height: float
    destroyed: bool = False

    def destroy(self) -> None:
        self.destroyed = True

    def contains(self, px: float, py: float) -> bool:
        return (
            not self.destroyed
            and self.x <= px <= self.x + self.width
            and self.y <= py <= self.y + self.height
        )


class LevelMap:
    """
    Represents a level loaded from Tiled.

    Handles:
    - Loading (optionally schema-validated) Tiled JSON
    - Layer lookup and visibility
    - Tile removal at world coordinates
    - Object layer lookup, including layers nested in groups
    - Named points and colliders by id
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.file_path: Optional[Path] = None

        self.width: int = 0
        self.height: int = 0
        self.tile_width: int = 16
        self.tile_height: int = 16
        self.properties: PropertyTable = PropertyTable()

        # Document order is depth order (first = bottom)
        self.tile_layers: dict[str, TileLayer] = {}
        self.object_layers: dict[str, ObjectLayer] = {}
        self.colliders: dict[str, Collider] = {}

    @classmethod
    def load(cls, path: str | Path, validate: bool = True, collider_layer: str = "Colliders") -> LevelMap:
        """
        Load a level from a Tiled JSON file.

        Raises:
            AuthoringError: If the file is unreadable or fails validation
        """
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise AuthoringError(f"Cannot read level {path}: {e}") from e

        level = cls.from_dict(data, name=path.stem, validate=validate, collider_layer=collider_layer)
        level.file_path = path
        return level

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        name: str = "",
        validate: bool = True,
        collider_layer: str = "Colliders",
    ) -> LevelMap:
        if validate:
            try:
                jsonschema.validate(instance=data, schema=TILED_MAP_SCHEMA)
            except jsonschema.ValidationError as e:
                raise AuthoringError(f"Level '{name}' is not a valid Tiled map: {e.message}") from e

        level = cls(name)
        level._parse_tiled_json(data)
        level._build_colliders(collider_layer)
        return level

    def _parse_tiled_json(self, data: dict) -> None:
        self.width = data.get('width', 0)
        self.height = data.get('height', 0)
        self.tile_width = data.get('tilewidth', 16)
        self.tile_height = data.get('tileheight', 16)
        self.properties = PropertyTable.from_object(data)
        for layer_data in data.get('layers', []):
            self._parse_layer(layer_data)

    def _parse_layer(self, data: dict) -> None:
        layer_type = data.get('type', 'tilelayer')
        name = data.get('name', '')
        props = PropertyTable.from_object(data)

        if layer_type == 'tilelayer':
            self.tile_layers[name] = TileLayer(
                name=name,
                width=data.get('width', self.width),
                height=data.get('height', self.height),
                tiles=list(data.get('data', [])),
                visible=data.get('visible', True),
                properties=props,
            )
        elif layer_type == 'objectgroup':
            objects = self._parse_objects(name, data.get('objects', []))
            if name in self.object_layers:
                logger.warning("Duplicate object layer '%s' in level '%s'; keeping the first", name, self.name)
                return
            self.object_layers[name] = ObjectLayer(name, objects, data.get('visible', True), props)
        elif layer_type == 'group':
            for child in data.get('layers', []):
                self._parse_layer(child)

    def _parse_objects(self, layer_name: str, raw_objects: list) -> list[LevelObject]:
        """Validate each object; a malformed one is logged and skipped."""
        objects = []
        for raw in raw_objects:
            try:
                objects.append(LevelObject.model_validate(raw))
            except ValidationError as e:
                label = (raw.get('name') or raw.get('id')) if isinstance(raw, dict) else raw
                logger.warning(
                    "Skipping malformed object %r in layer '%s' of level '%s': %s",
                    label, layer_name, self.name, e.errors()[0]['msg'],
                )
        return objects

    def _build_colliders(self, layer_name: str) -> None:
        for obj in self.get_objects(layer_name):
            if obj.width <= 0 or obj.height <= 0:
                continue
            cid = obj.script_id
            if cid:
                self.colliders[cid] = Collider(cid, obj.x, obj.y, obj.width, obj.height)

    # Queries

    def get_layer(self, name: str) -> TileLayer | ObjectLayer | None:
        return self.tile_layers.get(name) or self.object_layers.get(name)

    def get_objects(self, layer_name: str) -> list[LevelObject]:
        layer = self.object_layers.get(layer_name)
        return list(layer.objects) if layer else []

    def iter_objects(self) -> Iterator[tuple[str, LevelObject]]:
        for layer in self.object_layers.values():
            for obj in layer.objects:
                yield layer.name, obj

    def get_point(self, layer_name: str, point_name: str) -> tuple[float, float] | None:
        """Center of the first object named ``point_name`` in the layer."""
        for obj in self.get_objects(layer_name):
            if obj.name == point_name:
                return obj.center
        return None

    def world_to_tile(self, x: float, y: float) -> tuple[int, int]:
        return (int(x // self.tile_width), int(y // self.tile_height))

    def remove_tile_at_world(self, x: float, y: float, preferred_layer: str = "") -> bool:
        """
        Remove the tile under a world position.

        Tries ``preferred_layer`` first, then every tile layer from the
        top of the draw order down. Returns True if a tile was removed.
        """
        tx, ty = self.world_to_tile(x, y)
        if preferred_layer:
            layer = self.tile_layers.get(preferred_layer)
            if layer and layer.remove_tile_at(tx, ty):
                return True

        for layer in reversed(list(self.tile_layers.values())):
            if layer.remove_tile_at(tx, ty):
                return True
        return False

    def remove_collider(self, collider_id: str) -> bool:
        collider = self.colliders.pop(collider_id, None)
        if collider is None:
            return False
        collider.destroy()
        return True

    def is_blocked(self, x: float, y: float) -> bool:
        return any(c.contains(x, y) for c in self.colliders.values())
