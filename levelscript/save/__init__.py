"""
Save module - session state persistence.

Provides:
- Save/load of the GameState
- Multiple save slots (10 by default)
- Auto-save functionality
- Checksum validation
"""

from levelscript.save.manager import SaveEvent, SaveManager, SaveMetadata

__all__ = [
    "SaveEvent",
    "SaveManager",
    "SaveMetadata",
]
