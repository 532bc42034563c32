"""
Walk-into zones.

Evaluated once per frame against the actor position. A zone is an
interactable with a rectangle that is a trigger, a deny zone, or carries
zone audio. Ambience zones loop a sound while the actor stands in
them; they are evaluated separately, during dialogue as well.

Enter edge:
    hideLayers / showLayers
    zone audio (zoneSfx / zoneMusic / zoneAmbience, zoneLoop, zoneVolume,
        zoneFadeInMs, zoneDuckMusic + zoneDuckFactor)
    trigger zones run their interaction when it has dialogue or effects
    deny zones push or rewind the actor, with feedback on a cooldown
    triggerOnce / once disables the interaction
Exit edge:
    exitHideLayers / exitShowLayers, zone audio fade-out, duck released
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from engine.core.events import InteractionEvent
from levelscript.dialogue.script import End, Say
from levelscript.props import PropertyTable, clamp, falsy

if TYPE_CHECKING:
    from engine.audio.manager import SoundHandle
    from levelscript.context import LevelContext
    from levelscript.interaction.registry import Interactable, InteractionRegistry
    from levelscript.interaction.runner import InteractionRunner

logger = logging.getLogger(__name__)

ZONE_AUDIO_ORDER = ("zonesfx", "zonemusic", "zoneambience")
AMBIENCE_KEY_ORDER = ("ambiencekey", "ambiencesfx", "ambiencetrack")


def point_in_zone(px: float, py: float, center: tuple[float, float], width: float, height: float) -> bool:
    """Inclusive rectangle test around a center point."""
    cx, cy = center
    x0 = cx - width / 2
    y0 = cy - height / 2
    return x0 <= px <= x0 + width and y0 <= py <= y0 + height


def duck_reason(zone_id: str) -> str:
    return f"__zone_{zone_id}"


class TriggerZoneEvaluator:
    """
    Per-frame zone edge detection and zone side effects.

    Args:
        ctx: Level context
        registry: Interactables of the level
        runner: Runs trigger-zone interactions and shows deny lines

    Usage:
        zones = TriggerZoneEvaluator(ctx, registry, runner)
        # each frame, after the actor moved:
        zones.update()
        zones.update_ambience()
    """

    def __init__(self, ctx: LevelContext, registry: InteractionRegistry, runner: InteractionRunner):
        self.ctx = ctx
        self.registry = registry
        self.runner = runner

        self.inside: set[str] = set()
        self.exit_armed: set[str] = set()
        self.deny_cooldown_until: float = 0.0
        self._zone_audio: dict[str, SoundHandle] = {}
        self._ambience: dict[str, SoundHandle] = {}

    def update(self) -> None:
        ctx = self.ctx
        if not ctx.state.can_world_interact(ctx.now_ms):
            return

        px, py = ctx.actor.position
        for item in self.registry.zones():
            inside = point_in_zone(px, py, item.center, item.obj.width, item.obj.height)
            was_inside = item.id in self.inside
            if inside and not was_inside:
                if item.is_enabled():
                    self._enter(item, px, py)
            elif was_inside and not inside:
                self._exit(item)


    def reset(self) -> None:
        """Forget edge state and sounds (level exit; the scene audio stops the handles)."""
        self.inside.clear()
        self.exit_armed.clear()
        self._zone_audio.clear()
        self._ambience.clear()
        self.deny_cooldown_until = 0.0

    # --- Edges ---

    def _enter(self, item: Interactable, px: float, py: float) -> None:
        props = item.props
        self.inside.add(item.id)
        self.exit_armed.add(item.id)
        self.ctx.publish(InteractionEvent.ZONE_ENTERED, interaction_id=item.id)

        self._set_layers(props, ("hidelayers", "hidelayer"), False)
        self._set_layers(props, ("showlayers", "showlayer"), True)
        self._start_zone_audio(item)

        if item.is_trigger and (_has_dialogue(props) or _has_fx(props)):
            self.runner.run(item)

        if props.flag("deny"):
            self._deny(item, px, py)

        if props.flag("triggeronce") or props.flag("once"):
            self.ctx.state.disable_interaction(item.id)

    def _exit(self, item: Interactable) -> None:
        props = item.props
        self.inside.discard(item.id)
        if item.id in self.exit_armed:
            self.exit_armed.discard(item.id)
            self._set_layers(props, ("exithidelayers", "exithidelayer"), False)
            self._set_layers(props, ("exitshowlayers", "exitshowlayer"), True)

        self._stop_zone_audio(item)
        self.ctx.audio.clear_duck_reason(duck_reason(item.id))
        self.ctx.publish(InteractionEvent.ZONE_EXITED, interaction_id=item.id)

    # --- Deny ---

    def _deny(self, item: Interactable, px: float, py: float) -> None:
        ctx = self.ctx
        props = item.props
        cfg = ctx.config.zones
        now = ctx.now_ms
        if now < self.deny_cooldown_until:
            return
        self.deny_cooldown_until = now + (props.number("denycooldownms", cfg.deny_cooldown_ms) or 0)

        deny_sfx = props.text("denysfx")
        if deny_sfx and ctx.audio.exists(deny_sfx):
            ctx.audio.play_sfx(deny_sfx)

        shake_ms = props.number("denyshakems", 0) or 0
        if shake_ms > 0:
            ctx.shake.shake(shake_ms, props.number("denyshakeintensity", cfg.deny_shake_intensity))

        mode = props.text("denymode", "rewind").lower()
        if mode == "push":
            push = props.number("denypush", cfg.deny_push) or 0
            cx, cy = item.center
            dx, dy = px - cx, py - cy
            dist = math.hypot(dx, dy) or 1
            ctx.actor.set_position(px + dx / dist * push, py + dy / dist * push)
        elif ctx.prev_actor_pos is not None:
            ctx.actor.set_position(*ctx.prev_actor_pos)

        text = props.text("denydialogue", cfg.deny_text)
        if text:
            self.runner.dialogue.start([Say("", text), End()])
        ctx.publish(InteractionEvent.DENIED, interaction_id=item.id, mode=mode)
        logger.debug("Zone '%s' denied entry (%s)", item.id, mode)

    # --- Zone audio ---

    def _start_zone_audio(self, item: Interactable) -> None:
        if item.id in self._zone_audio:
            return
        props = item.props
        audio = self.ctx.audio
        cfg = self.ctx.config.zones

        key = props.first_text(*ZONE_AUDIO_ORDER)
        if not key or not audio.exists(key):
            return

        volume = clamp(props.number("zonevolume", cfg.zone_volume) or 0, 0.0, 1.0)
        fade_in = props.number("zonefadeinms", 0) or 0
        handle = audio.add(key, loop=not falsy(props.get("zoneloop")), volume=0.0 if fade_in > 0 else volume)
        if handle is None:
            return
        self._zone_audio[item.id] = handle
        handle.play()
        if fade_in > 0:
            audio.fade(handle, volume, fade_in, steps=cfg.fade_steps, start=0.0)

        if props.flag("zoneduckmusic"):
            audio.set_duck_reason(duck_reason(item.id), props.number("zoneduckfactor", cfg.duck_factor))

    def _stop_zone_audio(self, item: Interactable) -> None:
        handle = self._zone_audio.pop(item.id, None)
        if handle is None:
            return
        audio = self.ctx.audio
        fade_out = item.props.number("zonefadeoutms", 0) or 0
        if fade_out > 0:
            audio.fade(
                handle, 0.0, fade_out,
                steps=self.ctx.config.zones.fade_steps,
                stop_at_end=True,
                on_done=lambda: audio.release(handle),
            )
        else:
            audio.release(handle)

    # --- Ambience ---

    def update_ambience(self) -> None:
        """Loop ambience while the actor is inside an ambience zone; runs during dialogue too."""
        audio = self.ctx.audio
        px, py = self.ctx.actor.position
        for item in self.registry.ambience_zones():
            inside = point_in_zone(px, py, item.center, item.obj.width, item.obj.height)
            existing = self._ambience.get(item.id)
            if inside:
                if existing is not None and existing.is_playing:
                    continue
                key = item.props.first_text(*AMBIENCE_KEY_ORDER)
                handle = audio.add(key, loop=True, volume=self._ambience_volume(item.props), duckable=True)
                if handle is not None:
                    handle.play()
                    self._ambience[item.id] = handle
            elif existing is not None:
                audio.release(existing)
                del self._ambience[item.id]

    def _ambience_volume(self, props: PropertyTable) -> float:
        pct = props.number("ambiencevolumepct")
        if pct is not None:
            return clamp(pct / 100, 0.0, 1.0)
        return clamp(props.number("ambiencevolume", self.ctx.config.zones.ambience_volume) or 0, 0.0, 1.0)

    # --- Helpers ---

    def _set_layers(self, props: PropertyTable, keys: tuple[str, ...], visible: bool) -> None:
        for key in keys:
            if props.get(key) is not None:
                for name in props.csv(key):
                    self.ctx.set_layer_visible(name, visible)
                return


def _has_dialogue(props: PropertyTable) -> bool:
    return any(key.startswith("dialogue") or "postdialogue" in key for key in props)


def _has_fx(props: PropertyTable) -> bool:
    return bool(props.first_text("sfx", "presfx", "zonesfx")) or props.get("shake") is not None

