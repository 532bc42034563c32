"""Level-scoped audio on top of the engine audio manager."""

from levelscript.audio.controller import Fade, SceneAudio

__all__ = ["Fade", "SceneAudio"]
