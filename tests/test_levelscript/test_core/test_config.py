import json
import pytest
from levelscript.config import EngineConfig

def test_defaults():
    config = EngineConfig()
    assert config.dialogue.typing_interval_ms == 18
    assert config.dialogue.input_cooldown_ms == 500
    assert config.dialogue.close_interact_lock_ms == 240
    assert config.zones.deny_push == 12
    assert config.zones.deny_cooldown_ms == 600
    assert config.npc.speed == 40
    assert config.interaction.max_dist == 22
    assert config.layers.points == "Points"
    assert config.companions == ["saga", "aloise"]

def test_load_missing_file(tmp_path):
    config = EngineConfig.load(tmp_path / "nope.json")
    assert config == EngineConfig()

def test_load_partial_file(tmp_path):
    path = tmp_path / "engine.json"
    path.write_text(json.dumps({
        "zones": {"deny_cooldown_ms": 900},
        "scene_music": {"Library": {"key": "theme", "volume": 0.4}},
    }))

    config = EngineConfig.load(path)

    assert config.zones.deny_cooldown_ms == 900
    assert config.zones.deny_push == 12
    assert config.scene_music["Library"].key == "theme"
    assert config.scene_music["Library"].loop is True

@pytest.mark.parametrize("payload", [
    {"zones": {"zone_volume": 5}},
    {"dialogue": {"no_such_setting": 1}},
])
def test_invalid_file_falls_back_to_defaults(tmp_path, caplog, payload):
    path = tmp_path / "engine.json"
    path.write_text(json.dumps(payload))

    config = EngineConfig.load(path)

    assert config == EngineConfig()
    assert "Invalid engine config" in caplog.text

def test_unreadable_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "engine.json"
    path.write_text("{not json")

    assert EngineConfig.load(path) == EngineConfig()
    assert "Failed to read engine config" in caplog.text
