"""
Interaction registry.

Builds the interactables of a level from its interaction object layer
and answers "what can the player use right now". Interactables are
runtime-only: they are rebuilt on every level entry from the level
objects plus whatever GameState has recorded about them.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from engine.core.events import InteractionEvent
from levelscript.interaction.schema import EffectBundle, compile_effects
from levelscript.level.map import LevelObject
from levelscript.props import PropertyTable, to_float
from levelscript.state.flags import FlagKey, FlagNamespace

if TYPE_CHECKING:
    from levelscript.context import LevelContext
    from levelscript.state.game_state import GameState

logger = logging.getLogger(__name__)

ZONE_AUDIO_KEYS = ("zonesfx", "zonemusic", "zoneambience")
AMBIENCE_KEYS = ("ambiencekey", "ambiencesfx", "ambiencetrack")


def forced_disabled_key(scene: str, interaction_id: str) -> FlagKey:
    return FlagKey.of(FlagNamespace.FORCED_DISABLED, scene, interaction_id)


def forced_enabled_key(scene: str, interaction_id: str) -> FlagKey:
    return FlagKey.of(FlagNamespace.FORCED_ENABLED, scene, interaction_id)


def set_forced_disabled(state: GameState, scene: str, interaction_id: str, disabled: bool) -> None:
    """Force an interaction off (or lift that); forcing off also drops a forced-on."""
    state.set_key(forced_disabled_key(scene, interaction_id), bool(disabled))
    if disabled:
        state.set_key(forced_enabled_key(scene, interaction_id), False)


def set_forced_enabled(state: GameState, scene: str, interaction_id: str, enabled: bool) -> None:
    state.set_key(forced_enabled_key(scene, interaction_id), bool(enabled))
    if enabled:
        state.set_key(forced_disabled_key(scene, interaction_id), False)


def tile_removed_key(scene: str, interaction_id: str) -> FlagKey:
    return FlagKey.of(FlagNamespace.TILE_REMOVED, scene, interaction_id)


@dataclass
class Interactable:
    """
    A usable object of the current level.

    Attributes:
        id: Interaction id (``id`` property, else the object name)
        obj: Source level object
        props: Its property table
        center: Center of the object's bounds (the point itself for point objects)
        selectable: Can be picked with the interact key
        is_trigger: Auto-fires on zone entry
        prompt: Text shown when selected
        npc_id: Linked NPC; the interaction follows it and is off while it walks
    """
    id: str
    obj: LevelObject
    props: PropertyTable
    center: tuple[float, float]
    selectable: bool = True
    is_trigger: bool = False
    prompt: str = "Interact"
    max_dist: float = 22
    look_max_dist: float = 44
    look_min_dot: float = 0.65
    npc_id: str = ""
    registry: Optional[InteractionRegistry] = field(default=None, repr=False, compare=False)
    _effects: dict[str, EffectBundle] = field(default_factory=dict, repr=False, compare=False)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return (self.obj.x, self.obj.y, self.obj.width, self.obj.height)

    @property
    def is_zone(self) -> bool:
        return self.is_trigger or self.props.flag("deny") or any(self.props.has(k) for k in ZONE_AUDIO_KEYS)

    @property
    def is_ambience(self) -> bool:
        return self.props.flag("ambience") or any(self.props.has(k) for k in AMBIENCE_KEYS)

    def effects(self, prefix: str = "") -> EffectBundle:
        """Compiled effects for completion ("") or a choice ("choiceN"), cached."""
        bundle = self._effects.get(prefix)
        if bundle is None:
            scene = self.registry.ctx.scene if self.registry else ""
            bundle = compile_effects(self.props, scene, prefix)
            self._effects[prefix] = bundle
        return bundle

    def is_enabled(self) -> bool:
        return self.registry.is_enabled(self) if self.registry else True

    def get_pos(self) -> tuple[float, float]:
        return self.registry.get_pos(self) if self.registry else self.center

    def action(self) -> None:
        if self.registry:
            self.registry.run(self)


class InteractionRegistry:
    """
    Interactables of one level visit.

    Handles:
    - Building interactables from the interaction layer (first id wins)
    - The enablement chain
    - Nearest-interactable selection by distance and look direction
    - Re-applying persisted tile removals on entry

    Usage:
        registry = InteractionRegistry(ctx)
        registry.build()
        target = registry.find_nearest(ctx.actor.position, ctx.actor.facing())
        if target:
            target.action()
    """

    def __init__(self, ctx: LevelContext, on_action: Optional[Callable[[Interactable], None]] = None):
        self.ctx = ctx
        self.on_action = on_action
        self._items: dict[str, Interactable] = {}

    def build(self, layer_name: Optional[str] = None) -> list[Interactable]:
        layer_name = layer_name or self.ctx.config.layers.interactions
        self._items.clear()
        cfg = self.ctx.config.interaction

        for obj in self.ctx.level.get_objects(layer_name):
            interaction_id = obj.script_id
            if not interaction_id:
                continue
            if interaction_id in self._items:
                logger.warning(
                    "Duplicate interaction id '%s' in %s (layer '%s'); keeping the first",
                    interaction_id, self.ctx.scene, layer_name,
                )
                continue

            props = obj.props
            is_trigger = props.flag("autofire") or props.flag("trigger")
            item = Interactable(
                id=interaction_id,
                obj=obj,
                props=props,
                center=obj.center,
                selectable=props.flag("selectable", default=not is_trigger),
                is_trigger=is_trigger,
                prompt=props.text("prompt", cfg.default_prompt),
                max_dist=props.number("maxdist", cfg.max_dist),
                look_max_dist=props.number("lookmaxdist", cfg.look_max_dist),
                look_min_dot=props.number("lookmindot", cfg.look_min_dot),
                npc_id=props.first_text("npcid", "targetnpc", "npc"),
                registry=self,
            )
            self._items[interaction_id] = item
            self.ctx.publish(InteractionEvent.REGISTERED, interaction_id=interaction_id)

        logger.debug("Built %d interactables for %s", len(self._items), self.ctx.scene)
        return list(self._items.values())

    # --- Collection ---

    def __iter__(self) -> Iterator[Interactable]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, interaction_id: object) -> bool:
        return interaction_id in self._items

    def get(self, interaction_id: str) -> Interactable | None:
        return self._items.get(interaction_id)

    def remove(self, interaction_id: str) -> bool:
        """Drop an interactable from this visit (persistence is the caller's business)."""
        return self._items.pop(interaction_id, None) is not None

    def zones(self) -> list[Interactable]:
        return [it for it in self._items.values() if it.is_zone]

    def ambience_zones(self) -> list[Interactable]:
        return [it for it in self._items.values() if it.is_ambience and it.obj.width > 0 and it.obj.height > 0]

    # --- Enablement ---

    def is_enabled(self, item: Interactable) -> bool:
        state = self.ctx.state
        props = item.props
        scene = self.ctx.scene

        if state.has_key(forced_disabled_key(scene, item.id)):
            return False
        if state.is_interaction_disabled(item.id):
            return False
        if state.has_key(forced_enabled_key(scene, item.id)):
            return True

        required = _flag_list(props, "enabledifflags", "enabledifflag")
        if required and not all(state.is_flag_set(f) for f in required):
            return False
        any_of = _flag_list(props, "enabledifanyflags", "enabledifanyflag")
        if any_of and not any(state.is_flag_set(f) for f in any_of):
            return False
        forbidden = _flag_list(props, "disabledifflags", "disabledifflag")
        if forbidden and any(state.is_flag_set(f) for f in forbidden):
            return False

        if item.npc_id and self.ctx.mover.is_moving(item.npc_id):
            return False

        choice_id = props.first_text("requireschoiceid", "requireschoice")
        if choice_id:
            wanted = to_float(props.get("requireschoicevalue"))
            if wanted is None:
                wanted = to_float(props.get("requireschoiceval"))
            if wanted is None:
                wanted = to_float(props.get("requireschoiceindex"))
            got = state.get_interaction_choice(choice_id)
            if wanted is not None and wanted > 0:
                return got == wanted
            return got is not None and got > 0
        return True

    def get_pos(self, item: Interactable) -> tuple[float, float]:
        if item.npc_id:
            npc = self.ctx.npcs.get(item.npc_id)
            if npc is not None:
                return npc.position
        return item.center

    def run(self, item: Interactable) -> None:
        if self.on_action is not None:
            self.on_action(item)

    # --- Selection ---

    def find_nearest(
        self,
        actor_pos: tuple[float, float],
        facing: tuple[float, float] = (0.0, 1.0),
    ) -> Interactable | None:
        """
        Best selectable, enabled interactable for the actor.

        In range when within ``max_dist``, or within ``look_max_dist``
        while the actor looks at it (dot >= ``look_min_dot``). Among
        candidates the lowest ``distance - facing_weight * dot`` wins.
        """
        px, py = actor_pos
        fx, fy = _normalize(facing)
        weight = self.ctx.config.interaction.facing_weight

        best: Interactable | None = None
        best_score = math.inf
        for item in self._items.values():
            if not item.selectable or not item.is_enabled():
                continue
            x, y = item.get_pos()
            dx, dy = x - px, y - py
            dist = math.hypot(dx, dy)
            dot = (fx * dx + fy * dy) / dist if dist > 0 else 1.0

            in_range = dist <= item.max_dist or (dist <= item.look_max_dist and dot >= item.look_min_dot)
            if not in_range:
                continue
            score = dist - weight * dot
            if score < best_score:
                best_score = score
                best = item
        return best

    # --- Re-entry ---

    def reapply_persisted_tile_removals(self) -> int:
        """Remove tiles again for interactions that already removed theirs; those interactions go away."""
        removed = 0
        for item in list(self._items.values()):
            layer = item.props.text("tileremovelayer")
            if not layer or not self.ctx.state.has_key(tile_removed_key(self.ctx.scene, item.id)):
                continue
            cx, cy = item.center
            self.ctx.level.remove_tile_at_world(cx, cy, layer)
            self.ctx.state.disable_interaction(item.id)
            self.remove(item.id)
            removed += 1
        return removed


def _flag_list(props: PropertyTable, *keys: str) -> list[str]:
    for key in keys:
        if props.get(key) is not None:
            return props.csv(key)
    return []


def _normalize(vec: tuple[float, float]) -> tuple[float, float]:
    length = math.hypot(*vec)
    if length == 0:
        return (0.0, 1.0)
    return (vec[0] / length, vec[1] / length)
