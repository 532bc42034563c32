"""
Core Audio Manager.

Sounds are registered under a key (a file path per key) and handed out
as SoundHandle objects. A handle owns one pygame mixer channel while
playing and carries its own loop flag and volume, which lets callers
fade, duck and stop individual sounds instead of whole categories.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pygame

from engine.core.events import EventBus, AudioEvent

logger = logging.getLogger(__name__)


class SoundHandle:
    """
    A playable instance of a loaded sound.

    Args:
        key: Registry key the sound was created from
        sound: The pygame Sound object
        loop: Loop forever when True
        volume: Initial volume (0.0 to 1.0)
    """

    def __init__(self, key: str, sound: pygame.mixer.Sound, loop: bool = False, volume: float = 1.0):
        self.key = key
        self.loop = loop
        self._sound = sound
        self._volume = max(0.0, min(1.0, float(volume)))
        self._channel: pygame.mixer.Channel | None = None

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def is_playing(self) -> bool:
        if self._channel is None:
            return False
        return bool(self._channel.get_busy()) and self._channel.get_sound() is self._sound

    def play(self) -> None:
        """Start playback on a free channel (restarts if already playing)."""
        self.stop()
        channel = pygame.mixer.find_channel(True)
        if channel is None:
            logger.warning("No free mixer channel for sound '%s'", self.key)
            return
        channel.set_volume(self._volume)
        channel.play(self._sound, loops=-1 if self.loop else 0)
        self._channel = channel

    def stop(self) -> None:
        if self._channel is not None:
            if self._channel.get_sound() is self._sound:
                self._channel.stop()
            self._channel = None

    def set_volume(self, volume: float) -> None:
        self._volume = max(0.0, min(1.0, float(volume)))
        if self._channel is not None:
            self._channel.set_volume(self._volume)

    def __repr__(self) -> str:
        return f"SoundHandle({self.key!r}, loop={self.loop}, volume={self._volume:.2f})"


class AudioManager:
    """
    Central audio manager for the engine.

    Handles:
    - Mixer initialization
    - Sound registration by key and caching
    - Creating SoundHandles for playback
    - Master volume applied to every handle it creates

    Usage:
        audio = AudioManager()
        audio.init()
        audio.register("door_open", "assets/sfx/door.ogg")
        handle = audio.add("door_open", volume=0.5)
        if handle:
            handle.play()
    """

    def __init__(self, event_bus: EventBus | None = None, assets_path: str | Path = "."):
        self.event_bus = event_bus
        self.assets_path = Path(assets_path)

        self._master_volume: float = 1.0
        self._paths: dict[str, Path] = {}
        self._sound_cache: dict[str, pygame.mixer.Sound] = {}
        self._initialized: bool = False

    def init(self, frequency: int = 44100, size: int = -16, channels: int = 2, buffer: int = 512) -> None:
        """Initialize the audio system."""
        if pygame.mixer.get_init():
            self._initialized = True
            return

        try:
            pygame.mixer.init(frequency=frequency, size=size, channels=channels, buffer=buffer)
            pygame.mixer.set_num_channels(32)
            self._initialized = True
            logger.info("Audio system initialized.")
        except pygame.error as e:
            logger.error("Failed to initialize audio system: %s", e)

    def quit(self) -> None:
        """Shutdown audio system."""
        pygame.mixer.quit()
        self._initialized = False

    def set_master_volume(self, volume: float) -> None:
        """Set master volume (0.0 to 1.0)."""
        self._master_volume = max(0.0, min(1.0, volume))

    # --- Registry ---

    def register(self, key: str, file_path: str | Path) -> None:
        """Associate a sound key with a file path (relative to assets_path)."""
        self._paths[key] = self.assets_path / file_path
        self._sound_cache.pop(key, None)

    def register_many(self, mapping: dict[str, str]) -> None:
        for key, path in mapping.items():
            self.register(key, path)

    def exists(self, key: str) -> bool:
        """True if the key is registered and its file can be loaded."""
        return self._get_sound(key) is not None

    def _get_sound(self, key: str) -> pygame.mixer.Sound | None:
        if not self._initialized:
            return None
        if key in self._sound_cache:
            return self._sound_cache[key]

        path = self._paths.get(key)
        if path is None or not path.exists():
            return None
        try:
            sound = pygame.mixer.Sound(str(path))
        except pygame.error as e:
            logger.error("Failed to load sound %s: %s", path, e)
            return None
        self._sound_cache[key] = sound
        return sound

    # --- Playback ---

    def add(self, key: str, loop: bool = False, volume: float = 1.0) -> SoundHandle | None:
        """
        Create a handle for a registered sound.

        Returns:
            The handle, or None (with a warning) when the key is not loaded.
        """
        sound = self._get_sound(key)
        if sound is None:
            logger.warning("Audio key not loaded: %s", key)
            return None
        return SoundHandle(key, sound, loop=loop, volume=volume * self._master_volume)

    def play(self, key: str, volume: float = 1.0) -> SoundHandle | None:
        """Fire-and-forget sound effect."""
        handle = self.add(key, loop=False, volume=volume)
        if handle is None:
            return None
        handle.play()
        if self.event_bus:
            self.event_bus.publish(AudioEvent.SFX_PLAYED, key=key, volume=handle.volume)
        return handle
