"""
Structured persistence keys.

Every "has this already happened" record lives in the flat flag map of
GameState under a key produced here, so the encoding is defined exactly
once. A key is ``(namespace, scene, object_id, *subkeys)``; parts are
percent-escaped before joining, which keeps the separator unambiguous
whatever an author types into an id.

Usage:
    key = FlagKey.of(FlagNamespace.TAKE_ONCE, "Library", "desk", "key")
    state.set_key(key, True)
    key.encode()   # '__take_once::Library::desk::key'
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote, unquote

SEPARATOR = "::"
PREFIX = "__"


class FlagNamespace(Enum):
    """Categories of persisted records."""
    LAYER_INIT = "layer_init"
    TILE_REMOVED = "tile_removed"
    COLLIDER_REMOVED = "collider_removed"
    GIVE_ONCE = "give_once"
    TAKE_ONCE = "take_once"
    EFFECT_ONCE = "effect_once"
    LINE_EFFECT_ONCE = "line_effect_once"
    CHOICE_HELP_ONCE = "choice_help_once"
    CHOICE_FX_COUNT = "choice_fx_count"
    POST_DIALOGUE_COUNT = "post_dialogue_count"
    REQUIREMENTS_MET = "requirements_met"
    FORCED_DISABLED = "forced_disabled"
    FORCED_ENABLED = "forced_enabled"
    NPC_POSITION = "npc_position"
    NPC_FLIP = "npc_flip"
    NPC_REMOVED = "npc_removed"
    MUSIC_ONCE = "music_once"
    MUSIC_OVERRIDE = "music_override"


def _part(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return quote(str(value).strip(), safe=" ")


@dataclass(frozen=True)
class FlagKey:
    """An addressable persisted record."""

    namespace: FlagNamespace
    scene: str = ""
    object_id: str = ""
    subkeys: tuple[str, ...] = ()

    @classmethod
    def of(cls, namespace: FlagNamespace, scene: Any = "", object_id: Any = "", *subkeys: Any) -> FlagKey:
        """Build a key, stringifying every component."""
        def norm(value: Any) -> str:
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            return "" if value is None else str(value).strip()

        return cls(namespace, norm(scene), norm(object_id), tuple(norm(s) for s in subkeys))

    def encode(self) -> str:
        parts = [PREFIX + self.namespace.value, _part(self.scene), _part(self.object_id)]
        parts.extend(_part(s) for s in self.subkeys)
        return SEPARATOR.join(parts)

    @classmethod
    def decode(cls, text: str) -> FlagKey:
        """
        Inverse of encode().

        Raises:
            ValueError: If text is not an encoded FlagKey
        """
        parts = text.split(SEPARATOR)
        if len(parts) < 3 or not parts[0].startswith(PREFIX):
            raise ValueError(f"Not an encoded flag key: {text!r}")
        namespace = FlagNamespace(parts[0][len(PREFIX):])
        scene, object_id, *rest = (unquote(p) for p in parts[1:])
        return cls(namespace, scene, object_id, tuple(rest))

    @staticmethod
    def is_encoded(text: str) -> bool:
        return text.startswith(PREFIX) and SEPARATOR in text

    def __str__(self) -> str:
        return self.encode()
