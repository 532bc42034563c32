"""Audio module: sound registry and playable handles."""

from engine.audio.manager import AudioManager, SoundHandle

__all__ = [
    "AudioManager",
    "SoundHandle",
]
