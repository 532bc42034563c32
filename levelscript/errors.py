"""Exceptions raised by the scripting core.

Component boundaries catch these, log them and skip the offending
object or effect. None of them is allowed to escape a frame update.
"""


class LevelScriptError(Exception):
    """Base exception for the scripting core."""


class AuthoringError(LevelScriptError):
    """Raised when level data is missing a required property or reference."""


class RuntimeInconsistency(LevelScriptError):
    """Raised when an effect targets something that is not (or no longer) there."""


class ResourceUnavailable(LevelScriptError):
    """Raised when an audio key or other asset was never loaded."""


class SaveError(LevelScriptError):
    """Raised when save or load operations fail."""
