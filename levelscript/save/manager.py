"""
Save/Load system - GameState persistence.

Provides:
- Save/load of the whole GameState to JSON files
- Multiple save slots (10 by default) plus an auto-save slot
- Auto-save on a real-time interval or on level change
- Save integrity validation (checksum)

Loading rebuilds a fresh GameState from the saved flags and records and
copies it into the live one, so every component holding the state sees
the restored values.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError

from levelscript.errors import SaveError
from levelscript.state.game_state import GameState

if TYPE_CHECKING:
    from engine.core.events import EventBus

logger = logging.getLogger(__name__)


class SaveEvent(Enum):
    """Save system events."""
    SAVE_STARTED = auto()
    SAVE_COMPLETED = auto()
    SAVE_FAILED = auto()
    LOAD_STARTED = auto()
    LOAD_COMPLETED = auto()
    LOAD_FAILED = auto()
    AUTO_SAVE_TRIGGERED = auto()


@dataclass
class SaveMetadata:
    """Metadata about a save file."""
    slot: int
    name: str
    timestamp: str
    real_time_ms: float
    scene: str = ""
    help_score: int = 0


class SaveManager:
    """
    Manages saving and loading the session state.

    Usage:
        saves = SaveManager(state, save_path="saves", event_bus=bus)
        saves.save_game(slot=0, name="Library")
        saves.load_game(slot=0)

        # Auto-save
        saves.enable_auto_save(interval_ms=300_000)
        saves.update(dt_ms)
    """

    VERSION = "1.0"
    MAX_SLOTS = 10
    AUTO_SAVE_SLOT = 99

    def __init__(
        self,
        state: GameState,
        save_path: str | Path = "saves",
        event_bus: Optional[EventBus] = None,
    ):
        self.state = state
        self.save_path = Path(save_path)
        self.save_path.mkdir(parents=True, exist_ok=True)
        self.event_bus = event_bus

        self._current_slot: Optional[int] = None

        self._auto_save_enabled: bool = False
        self._auto_save_interval_ms: float = 300_000.0
        self._auto_save_timer_ms: float = 0.0
        self._auto_save_on_level_change: bool = True

    def _get_slot_path(self, slot: int) -> Path:
        return self.save_path / f"save_{slot:02d}.json"

    def _get_metadata_path(self, slot: int) -> Path:
        return self.save_path / f"save_{slot:02d}_meta.json"

    def get_save_slots(self) -> list[Optional[SaveMetadata]]:
        """Metadata for all regular slots (None for empty or unreadable ones)."""
        slots: list[Optional[SaveMetadata]] = []
        for i in range(self.MAX_SLOTS):
            meta_path = self._get_metadata_path(i)
            if not meta_path.exists():
                slots.append(None)
                continue
            try:
                with open(meta_path, 'r', encoding='utf-8') as f:
                    slots.append(SaveMetadata(**json.load(f)))
            except (OSError, json.JSONDecodeError, TypeError) as e:
                logger.warning("Unreadable save metadata %s: %s", meta_path, e)
                slots.append(None)
        return slots

    # --- Save ---

    def save_game(self, slot: int, name: str = "Save") -> bool:
        """
        Write the current state to a slot.

        Returns:
            True if the save was written
        """
        self._publish(SaveEvent.SAVE_STARTED, slot=slot)
        metadata = SaveMetadata(
            slot=slot,
            name=name,
            timestamp=datetime.now().isoformat(),
            real_time_ms=self.state.real_time_ms,
            scene=self.state.transition.to_scene or "",
            help_score=self.state.help_score,
        )
        save_dict: dict[str, Any] = {
            'version': self.VERSION,
            'metadata': asdict(metadata),
            'state': self.state.model_dump(mode='json'),
        }
        save_dict['checksum'] = self._calculate_checksum(save_dict)

        try:
            with open(self._get_slot_path(slot), 'w', encoding='utf-8') as f:
                json.dump(save_dict, f, indent=2)
            with open(self._get_metadata_path(slot), 'w', encoding='utf-8') as f:
                json.dump(asdict(metadata), f, indent=2)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Save to slot %d failed: %s", slot, e)
            self._publish(SaveEvent.SAVE_FAILED, slot=slot, error=str(e))
            return False

        self._current_slot = slot
        logger.info("Saved slot %d (%s)", slot, name)
        self._publish(SaveEvent.SAVE_COMPLETED, slot=slot)
        return True

    # --- Load ---

    def read_state(self, slot: int, validate: bool = True) -> GameState:
        """
        Rebuild the GameState stored in a slot without touching the live one.

        Raises:
            SaveError: Missing file, unreadable JSON, checksum mismatch or invalid state
        """
        save_path = self._get_slot_path(slot)
        if not save_path.exists():
            raise SaveError(f"No save in slot {slot}")
        try:
            with open(save_path, 'r', encoding='utf-8') as f:
                save_dict = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SaveError(f"Cannot read save slot {slot}: {e}") from e

        if validate:
            checksum = save_dict.get('checksum')
            if checksum and not self._verify_checksum(save_dict, checksum):
                raise SaveError(f"Save slot {slot} is corrupted: checksum mismatch")

        try:
            return GameState.model_validate(save_dict.get('state') or {})
        except ValidationError as e:
            raise SaveError(f"Save slot {slot} holds an invalid state: {e}") from e

    def load_game(self, slot: int, validate: bool = True) -> bool:
        """
        Restore a slot into the live state.

        Returns:
            True if the load succeeded
        """
        self._publish(SaveEvent.LOAD_STARTED, slot=slot)
        try:
            loaded = self.read_state(slot, validate=validate)
        except SaveError as e:
            logger.warning("Load failed: %s", e)
            self._publish(SaveEvent.LOAD_FAILED, slot=slot, error=str(e))
            return False

        for field_name in GameState.model_fields:
            setattr(self.state, field_name, getattr(loaded, field_name))
        self.state.interact_lock_until = 0.0

        self._current_slot = slot
        logger.info("Loaded slot %d", slot)
        self._publish(SaveEvent.LOAD_COMPLETED, slot=slot)
        return True

    def delete_save(self, slot: int) -> bool:
        try:
            for path in (self._get_slot_path(slot), self._get_metadata_path(slot)):
                if path.exists():
                    path.unlink()
        except OSError as e:
            logger.warning("Could not delete save slot %d: %s", slot, e)
            return False
        return True

    # --- Auto-save ---

    def enable_auto_save(self, interval_ms: float = 300_000.0, on_level_change: bool = True) -> None:
        """
        Enable auto-save.

        Args:
            interval_ms: Real time between auto-saves (0 disables timed saves)
            on_level_change: Also auto-save on level transitions
        """
        self._auto_save_enabled = True
        self._auto_save_interval_ms = interval_ms
        self._auto_save_on_level_change = on_level_change
        self._auto_save_timer_ms = 0.0

    def disable_auto_save(self) -> None:
        self._auto_save_enabled = False

    def update(self, dt_ms: float) -> None:
        """Advance the auto-save timer (call each frame)."""
        if not self._auto_save_enabled or self._auto_save_interval_ms <= 0:
            return
        self._auto_save_timer_ms += dt_ms
        if self._auto_save_timer_ms >= self._auto_save_interval_ms:
            self._auto_save_timer_ms = 0.0
            self.auto_save()

    def auto_save(self) -> bool:
        self._publish(SaveEvent.AUTO_SAVE_TRIGGERED)
        return self.save_game(slot=self.AUTO_SAVE_SLOT, name="Auto Save")

    def trigger_level_change_save(self) -> None:
        """Called on a level transition to auto-save if enabled."""
        if self._auto_save_enabled and self._auto_save_on_level_change:
            self.auto_save()

    # --- Checksum validation ---

    def _calculate_checksum(self, data: dict) -> str:
        json_str = json.dumps(data, sort_keys=True, separators=(',', ':'))
        hash_bytes = hashlib.sha256(json_str.encode('utf-8')).digest()
        return base64.b64encode(hash_bytes).decode('ascii')

    def _verify_checksum(self, data: dict, expected_checksum: str) -> bool:
        data_copy = data.copy()
        data_copy.pop('checksum', None)
        return self._calculate_checksum(data_copy) == expected_checksum

    def validate_save(self, slot: int) -> bool:
        """
        Validate a save file's integrity.

        Returns:
            True if save is valid, False if corrupted or missing
        """
        save_path = self._get_slot_path(slot)
        if not save_path.exists():
            return False
        try:
            with open(save_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            return False

        checksum = data.get('checksum')
        if not checksum:
            return True
        return self._verify_checksum(data, checksum)

    # --- Properties ---

    @property
    def current_slot(self) -> Optional[int]:
        return self._current_slot

    @property
    def has_auto_save(self) -> bool:
        return self._get_slot_path(self.AUTO_SAVE_SLOT).exists()

    def _publish(self, event_type: SaveEvent, **data: Any) -> None:
        if self.event_bus:
            self.event_bus.publish(event_type, **data)
