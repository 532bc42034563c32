"""
Effect application.

Turns a compiled EffectBundle into GameState and level mutations. Two
events carry effects: completion of an interaction and selection of a
choice. Every effect that must happen at most once claims a FlagKey
before it runs, so re-running an interaction can never apply it twice.

Usage:
    applier = EffectApplier(registry)
    applier.apply("desk", item.props, ctx)                       # completion
    applier.apply("mira", item.props, ctx, EffectEvent.choice(2))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Optional

from engine.core.events import InteractionEvent
from levelscript.interaction.registry import (
    set_forced_disabled,
    set_forced_enabled,
    tile_removed_key,
)
from levelscript.interaction.schema import EffectBundle, compile_effects
from levelscript.state.flags import FlagKey, FlagNamespace

if TYPE_CHECKING:
    from levelscript.context import LevelContext
    from levelscript.interaction.registry import InteractionRegistry
    from levelscript.props import PropertyTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectEvent:
    """Which effect vocabulary to apply: completion (number 0) or choice N."""
    number: int = 0

    COMPLETE: ClassVar[EffectEvent]

    @classmethod
    def choice(cls, number: int) -> EffectEvent:
        if number < 1:
            raise ValueError(f"Choice numbers start at 1, got {number}")
        return cls(number)

    @property
    def is_choice(self) -> bool:
        return self.number > 0

    @property
    def prefix(self) -> str:
        return f"choice{self.number}" if self.number else ""


EffectEvent.COMPLETE = EffectEvent()


class EffectApplier:
    """
    Applies interaction and choice effects.

    Args:
        registry: Interactables of the current level; used for cached
            bundles, prompt overrides and dropping used-up interactables
    """

    def __init__(self, registry: Optional[InteractionRegistry] = None):
        self.registry = registry

    def bundle(self, interaction_id: str, props: PropertyTable, ctx: LevelContext, event: EffectEvent) -> EffectBundle:
        item = self.registry.get(interaction_id) if self.registry else None
        if item is not None and item.props is props:
            return item.effects(event.prefix)
        return compile_effects(props, ctx.scene, event.prefix)

    def apply(
        self,
        interaction_id: str,
        props: PropertyTable,
        ctx: LevelContext,
        event: EffectEvent = EffectEvent.COMPLETE,
    ) -> EffectBundle:
        """
        Apply the effects ``props`` carries for ``event``.

        Returns:
            The bundle that was applied
        """
        bundle = self.bundle(interaction_id, props, ctx, event)
        if event.is_choice:
            self._apply_choice(interaction_id, event.number, bundle, ctx)
        else:
            self._apply_complete(interaction_id, bundle, ctx)
        ctx.state.mark_scene_progress(ctx.scene)
        ctx.publish(InteractionEvent.EFFECTS_APPLIED, interaction_id=interaction_id, choice=event.number)
        return bundle

    # --- Completion ---

    def _apply_complete(self, interaction_id: str, fx: EffectBundle, ctx: LevelContext) -> None:
        state = ctx.state
        scene = ctx.scene

        if fx.clear_music_override:
            ctx.audio.clear_music_override()
        if fx.music is not None:
            music = fx.music
            once_key = FlagKey.of(FlagNamespace.MUSIC_ONCE, scene, interaction_id, music.key)
            if not music.once or state.guard_once(once_key):
                ctx.audio.set_scene_music(
                    music.key,
                    volume=music.volume,
                    loop=music.loop,
                    fade_ms=music.fade_ms,
                    persist=music.persist,
                    ignore_override=True,
                )

        if fx.tile_layer:
            self._remove_tile(interaction_id, fx.tile_layer, ctx)

        for layer in fx.hide_layers:
            ctx.set_layer_visible(layer, False)
        for layer in fx.show_layers:
            ctx.set_layer_visible(layer, True)

        for item in fx.give_items:
            state.add_item(item, 1)
        for item in fx.give_once_items:
            if state.guard_once(FlagKey.of(FlagNamespace.GIVE_ONCE, scene, interaction_id, item)):
                state.add_item(item, 1)
        for item in fx.take_once_items:
            if state.guard_once(FlagKey.of(FlagNamespace.TAKE_ONCE, scene, interaction_id, item)):
                state.remove_item(item, 1)
        for item in fx.take_items:
            state.remove_item(item, 1)

        for collider_id in fx.remove_colliders:
            self._remove_collider(collider_id, ctx)

        if fx.help is not None:
            state.add_help(fx.help)
        if fx.help_once is not None and state.guard_once(
            FlagKey.of(FlagNamespace.EFFECT_ONCE, scene, interaction_id, "helpscore")
        ):
            state.add_help(fx.help_once)
        if fx.score is not None:
            state.add_score(fx.score)
        if fx.score_once is not None and state.guard_once(
            FlagKey.of(FlagNamespace.EFFECT_ONCE, scene, interaction_id, "addscore")
        ):
            state.add_score(fx.score_once)

        if fx.mark_helped:
            state.mark_helped(fx.mark_helped)
        for flag in fx.set_flags:
            state.set_flag(flag, True)
        for flag in fx.clear_flags:
            state.set_flag(flag, False)

        for target in fx.disable_targets:
            set_forced_disabled(state, target.scene, target.interaction_id, True)
            if target.scene == scene:
                self._drop(target.interaction_id)
        for target in fx.enable_targets:
            set_forced_disabled(state, target.scene, target.interaction_id, False)
            set_forced_enabled(state, target.scene, target.interaction_id, True)

        if fx.disable_self:
            set_forced_disabled(state, scene, interaction_id, True)
            self._drop(interaction_id)

        if fx.remove_interactions:
            for other in fx.remove_interactions:
                state.disable_interaction(other)
        elif fx.once:
            state.disable_interaction(interaction_id)
        if fx.once or interaction_id in fx.remove_interactions:
            self._drop(interaction_id)

    # --- Choice ---

    def _apply_choice(self, interaction_id: str, number: int, fx: EffectBundle, ctx: LevelContext) -> None:
        state = ctx.state
        scene = ctx.scene

        if fx.mark_helped:
            state.mark_helped(fx.mark_helped)
        state.set_interaction_choice(interaction_id, number)

        uses = state.increment_key(FlagKey.of(FlagNamespace.CHOICE_FX_COUNT, scene, interaction_id, number))
        if fx.shake_ms:
            ctx.shake.stack(fx.shake_ms)
        if fx.sfx is not None and fx.sfx.allowed(uses):
            ctx.audio.play_scaled_sfx(fx.sfx.key, uses, fx.sfx.base, fx.sfx.step, fx.sfx.max_pct)

        if fx.add_companion:
            ctx.npcs.remove(fx.companion_npc)
            state.set_companion(fx.add_companion, True)
            state.disable_interaction(interaction_id)
            self._drop(interaction_id)
        if fx.remove_companion:
            state.set_companion(fx.remove_companion, False)

        if fx.help_once is not None and state.guard_once(
            FlagKey.of(FlagNamespace.CHOICE_HELP_ONCE, scene, interaction_id, number)
        ):
            state.add_help(fx.help_once)

        if fx.npc is not None:
            npc = fx.npc
            if npc.target and npc.flip:
                ctx.npcs.set_flip(npc.target, True)
            if npc.mover and npc.waypoints:
                ctx.mover.move_along_named(npc.mover, npc.waypoints, npc.point_layer, npc.speed)

        for layer in fx.hide_layers:
            ctx.set_layer_visible(layer, False)
        for layer in fx.show_layers:
            ctx.set_layer_visible(layer, True)
        for collider_id in fx.remove_colliders:
            self._remove_collider(collider_id, ctx)

        if fx.prompt and self.registry is not None:
            item = self.registry.get(interaction_id)
            if item is not None:
                item.prompt = fx.prompt

        for other in fx.enable_ids:
            state.enable_interaction(other)
        for other in fx.disable_ids:
            state.disable_interaction(other)

    # --- Helpers ---

    def _remove_tile(self, interaction_id: str, layer: str, ctx: LevelContext) -> None:
        item = self.registry.get(interaction_id) if self.registry else None
        if item is None:
            logger.warning("Tile removal for unknown interaction '%s' in %s", interaction_id, ctx.scene)
            return
        cx, cy = item.center
        if not ctx.level.remove_tile_at_world(cx, cy, layer):
            logger.warning("No tile under '%s' on layer '%s' (%s)", interaction_id, layer, ctx.scene)
        ctx.state.set_key(tile_removed_key(ctx.scene, interaction_id), True)

    def _remove_collider(self, collider_id: str, ctx: LevelContext) -> None:
        if not ctx.level.remove_collider(collider_id):
            logger.warning("Unknown collider '%s' in %s", collider_id, ctx.scene)
            return
        ctx.state.set_key(FlagKey.of(FlagNamespace.COLLIDER_REMOVED, ctx.scene, collider_id), True)

    def _drop(self, interaction_id: str) -> None:
        if self.registry is not None:
            self.registry.remove(interaction_id)
