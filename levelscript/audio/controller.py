"""
Scene Audio - level-scoped music, ducking, fades and scripted sfx.

Sits on top of engine.audio.AudioManager and owns every looping handle a
level starts, so leaving the level can silence them in one call.

Provides:
- Scene music with crossfade and a persisted per-level override
- A duck stack (dialogue) plus named duck reasons (zones); the lowest factor wins
- Volume fades ticked from the frame loop, linear or in fixed steps
- Use-scaled sound effects for repeated interactions

Usage:
    audio = SceneAudio(audio_manager, state, "Library", config, bus)
    audio.apply_scene_music_on_enter()
    audio.push_duck(0.3)
    ...
    audio.update(dt_ms)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from engine.core.events import AudioEvent
from levelscript.config import EngineConfig
from levelscript.props import clamp
from levelscript.state.flags import FlagKey, FlagNamespace

if TYPE_CHECKING:
    from engine.audio.manager import AudioManager, SoundHandle
    from engine.core.events import EventBus
    from levelscript.state.game_state import GameState

logger = logging.getLogger(__name__)


class Fade:
    """
    Volume tween on one handle.

    Args:
        handle: Sound to fade
        start: Volume at t=0
        end: Volume when done
        duration_ms: Total fade time
        steps: Apply the volume in this many discrete steps (None = linear)
        min_step_ms: Lower bound on the interval between steps
        stop_at_end: Stop the handle when the fade finishes
        on_done: Called once when the fade finishes
    """

    def __init__(
        self,
        handle: SoundHandle,
        start: float,
        end: float,
        duration_ms: float,
        steps: Optional[int] = None,
        min_step_ms: float = 10,
        stop_at_end: bool = False,
        on_done: Optional[Callable[[], None]] = None,
    ):
        self.handle = handle
        self.start = start
        self.end = end
        self.duration_ms = max(0.0, float(duration_ms))
        self.steps = steps
        self.step_ms = max(min_step_ms, self.duration_ms / steps) if steps else 0.0
        self.stop_at_end = stop_at_end
        self.on_done = on_done
        self.elapsed = 0.0
        self.done = False
        handle.set_volume(start)

    def _progress(self) -> float:
        if self.duration_ms <= 0:
            return 1.0
        if self.steps:
            return min(self.steps, int(self.elapsed // self.step_ms)) / self.steps
        return min(1.0, self.elapsed / self.duration_ms)

    def update(self, dt_ms: float) -> bool:
        """Advance the tween. Returns True once finished."""
        if self.done:
            return True
        self.elapsed += dt_ms
        t = self._progress()
        self.handle.set_volume(self.start + (self.end - self.start) * t)
        if t >= 1.0:
            self.done = True
            if self.stop_at_end:
                self.handle.stop()
            if self.on_done:
                self.on_done()
        return self.done

    def cancel(self) -> None:
        self.done = True


class SceneAudio:
    """
    Audio services for one level visit.

    Handles:
    - Scene music (override lookup, persistence, crossfade)
    - Ducking of music and ambience while dialogue or zones ask for it
    - Fades advanced by update(dt_ms)
    - Scripted one-shot and scaled sound effects
    """

    def __init__(
        self,
        audio: AudioManager,
        state: GameState,
        scene: str,
        config: Optional[EngineConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.audio = audio
        self.state = state
        self.scene = scene
        self.config = config or EngineConfig()
        self.event_bus = event_bus

        self.music: Optional[SoundHandle] = None
        self.music_key: str = ""

        self._fades: list[Fade] = []
        self._owned: list[SoundHandle] = []
        self._duckable: list[SoundHandle] = []
        self._duck_originals: dict[SoundHandle, float] = {}
        self._duck_stack: list[float] = []
        self._duck_reasons: dict[str, float] = {}
        self._applied_factor: float = 1.0

    # --- Handles ---

    def exists(self, key: str) -> bool:
        return bool(key) and self.audio.exists(key)

    def add(self, key: str, loop: bool = False, volume: float = 1.0, duckable: bool = False) -> SoundHandle | None:
        """
        Create a handle owned by this level.

        Duckable handles follow the current duck factor while they play.
        """
        if not key:
            return None
        handle = self.audio.add(key, loop=loop, volume=clamp(volume, 0.0, 1.0))
        if handle is None:
            return None
        self._owned.append(handle)
        if duckable:
            self._duckable.append(handle)
        return handle

    def play_sfx(self, key: str, volume: float = 1.0) -> SoundHandle | None:
        """Fire-and-forget effect. A missing key is logged and ignored."""
        if not key:
            return None
        return self.audio.play(key, volume=clamp(volume, 0.0, 1.0))

    def play_scaled_sfx(
        self,
        key: str,
        use_index: int,
        base: Any = None,
        step: Any = None,
        max_pct: Any = None,
    ) -> SoundHandle | None:
        """
        Play an effect whose volume grows with repeated use.

        Volume percent is ``min(max, base + (use - 1) * step)``; each
        parameter falls back to the interaction config and is clamped to 0..100.
        """
        cfg = self.config.interaction
        base_pct = _pct(base, cfg.sfx_base_pct)
        step_pct = _pct(step, cfg.sfx_step_pct)
        top_pct = _pct(max_pct, cfg.sfx_max_pct)
        pct = min(top_pct, base_pct + max(0, use_index - 1) * step_pct)
        return self.play_sfx(key, volume=pct / 100)

    # --- Fades ---

    def fade(
        self,
        handle: SoundHandle,
        to: float,
        duration_ms: float,
        steps: Optional[int] = None,
        start: Optional[float] = None,
        stop_at_end: bool = False,
        on_done: Optional[Callable[[], None]] = None,
    ) -> Fade:
        """Start a fade, replacing any fade already running on the handle."""
        for existing in self._fades:
            if existing.handle is handle:
                existing.cancel()
        fade = Fade(
            handle,
            handle.volume if start is None else start,
            clamp(to, 0.0, 1.0),
            duration_ms,
            steps=steps,
            min_step_ms=self.config.zones.min_fade_step_ms,
            stop_at_end=stop_at_end,
            on_done=on_done,
        )
        self._fades.append(fade)
        return fade

    def update(self, dt_ms: float) -> None:
        """Advance all running fades."""
        if not self._fades:
            return
        running = list(self._fades)
        self._fades = []
        for fade in running:
            if not fade.update(dt_ms):
                self._fades.append(fade)

    # --- Scene music ---

    def _override_key(self) -> FlagKey:
        return FlagKey.of(FlagNamespace.MUSIC_OVERRIDE, self.scene)

    def music_override(self) -> dict[str, Any] | None:
        value = self.state.get_key(self._override_key())
        if isinstance(value, dict) and value.get("key"):
            return value
        return None

    def clear_music_override(self) -> None:
        self.state.flags.pop(self._override_key().encode(), None)

    def set_scene_music(
        self,
        key: str,
        volume: Optional[float] = None,
        loop: bool = True,
        fade_ms: Optional[int] = None,
        persist: bool = False,
        ignore_override: bool = False,
    ) -> bool:
        """
        Switch the level's background track.

        Args:
            key: Audio key of the new track
            volume: Target volume (music config default when None)
            loop: Loop the track
            fade_ms: Crossfade time when a track is already playing
            persist: Store the choice as this level's music override
            ignore_override: Do not substitute the stored override

        Returns:
            True if the requested track is playing afterwards
        """
        music_cfg = self.config.music
        volume = music_cfg.volume if volume is None else clamp(volume, 0.0, 1.0)
        fade_ms = music_cfg.fade_ms if fade_ms is None else int(clamp(fade_ms, 0, 5000))

        if not ignore_override:
            override = self.music_override()
            if override is not None:
                key = str(override["key"])
                volume = clamp(float(override.get("volume", volume)), 0.0, 1.0)
                loop = bool(override.get("loop", loop))

        if not self.exists(key):
            logger.warning("Scene music key not loaded: %s (scene %s)", key, self.scene)
            return False

        if persist:
            self.state.set_key(self._override_key(), {"key": key, "volume": volume, "loop": loop})

        if key == self.music_key and self.music is not None and self.music.is_playing:
            return True

        previous = self.music
        crossfade = previous is not None and previous.is_playing and fade_ms > 0
        target = volume * self.duck_factor

        handle = self.add(key, loop=loop, volume=0.0 if crossfade else target, duckable=True)
        if handle is None:
            return False
        if self.duck_factor < 1.0:
            self._duck_originals[handle] = volume

        self.music = handle
        self.music_key = key
        handle.play()

        if crossfade:
            self.fade(previous, 0.0, fade_ms, stop_at_end=True, on_done=lambda: self._forget(previous))
            self.fade(handle, target, fade_ms, start=0.0)
            self._publish(AudioEvent.MUSIC_CROSSFADE, key=key, fade_ms=fade_ms)
        else:
            if previous is not None:
                previous.stop()
                self._forget(previous)
            self._publish(AudioEvent.MUSIC_STARTED, key=key, volume=volume)
        logger.debug("Scene music for %s -> %s", self.scene, key)
        return True

    def apply_scene_music_on_enter(self) -> bool:
        """Start the configured track, or the stored override when there is one."""
        override = self.music_override()
        configured = self.config.scene_music.get(self.scene)
        if override is None and configured is None:
            return False
        if configured is not None:
            return self.set_scene_music(configured.key, configured.volume, configured.loop, fade_ms=0)
        return self.set_scene_music(
            str(override["key"]),
            override.get("volume"),
            bool(override.get("loop", True)),
            fade_ms=0,
        )

    def stop_scene_music(self, fade_ms: int = 0) -> None:
        handle = self.music
        self.music = None
        self.music_key = ""
        if handle is None:
            return
        if fade_ms > 0 and handle.is_playing:
            self.fade(handle, 0.0, fade_ms, stop_at_end=True, on_done=lambda: self._forget(handle))
        else:
            handle.stop()
            self._forget(handle)

    # --- Ducking ---

    @property
    def duck_factor(self) -> float:
        factors = [*self._duck_stack, *self._duck_reasons.values()]
        return min(factors) if factors else 1.0

    def push_duck(self, factor: Any) -> None:
        """Duck for the duration of a dialogue; pair every push with a pop."""
        self._duck_stack.append(_factor(factor))
        self._apply_duck()

    def pop_duck(self) -> None:
        if self._duck_stack:
            self._duck_stack.pop()
        self._apply_duck()

    def set_duck_reason(self, reason: str, factor: Any) -> None:
        self._duck_reasons[reason] = _factor(factor)
        self._apply_duck()

    def clear_duck_reason(self, reason: str) -> None:
        if self._duck_reasons.pop(reason, None) is not None:
            self._apply_duck()

    def _apply_duck(self) -> None:
        factor = self.duck_factor
        if factor == self._applied_factor:
            return
        self._applied_factor = factor

        if factor >= 1.0:
            for handle, original in self._duck_originals.items():
                handle.set_volume(original)
            self._duck_originals.clear()
        else:
            for handle in self._duckable:
                if not handle.is_playing or not handle.loop:
                    continue
                original = self._duck_originals.setdefault(handle, handle.volume)
                handle.set_volume(original * factor)
        self._publish(AudioEvent.MUSIC_DUCKED, factor=factor)

    # --- Lifecycle ---

    def _forget(self, handle: SoundHandle) -> None:
        if handle in self._owned:
            self._owned.remove(handle)
        if handle in self._duckable:
            self._duckable.remove(handle)
        self._duck_originals.pop(handle, None)

    def release(self, handle: SoundHandle) -> None:
        """Stop a handle this level started and stop tracking it."""
        for fade in self._fades:
            if fade.handle is handle:
                fade.cancel()
        handle.stop()
        self._forget(handle)

    def stop_all(self) -> None:
        """Silence everything the level started (on level exit)."""
        for fade in self._fades:
            fade.cancel()
        self._fades.clear()
        for handle in list(self._owned):
            handle.stop()
        self._owned.clear()
        self._duckable.clear()
        self._duck_originals.clear()
        self._duck_stack.clear()
        self._duck_reasons.clear()
        self._applied_factor = 1.0
        self.music = None
        self.music_key = ""

    def _publish(self, event_type: AudioEvent, **data: Any) -> None:
        if self.event_bus:
            self.event_bus.publish(event_type, scene=self.scene, **data)


def _pct(value: Any, default: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = float(default)
    if number != number:
        number = float(default)
    return int(clamp(number, 0, 100))


def _factor(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:
        return 0.0
    return clamp(number, 0.0, 1.0)
