import pytest
from unittest.mock import MagicMock
from engine.audio.manager import AudioManager, SoundHandle
from engine.core.events import AudioEvent

# All tests here need the mock_pygame fixture from conftest
pytestmark = pytest.mark.usefixtures("mock_pygame")

@pytest.fixture
def mixer_channel():
    import pygame
    channel = MagicMock()
    pygame.mixer.find_channel.return_value = channel
    return channel

@pytest.fixture
def manager(tmp_path):
    (tmp_path / "door.ogg").write_bytes(b"")
    mgr = AudioManager(assets_path=tmp_path)
    mgr._initialized = True # Force initialized state for test
    mgr.register("door", "door.ogg")
    return mgr

def test_audio_manager_init():
    import pygame
    # Simulate mixer not initialized yet
    pygame.mixer.get_init.return_value = None

    mgr = AudioManager()
    mgr.init()
    # Should not crash and set initialized
    assert mgr._initialized
    pygame.mixer.init.assert_called_once()

def test_missing_key_returns_none(manager, caplog):
    assert manager.add("nope") is None
    assert manager.play("nope") is None
    assert not manager.exists("nope")
    assert "Audio key not loaded: nope" in caplog.text

def test_uninitialized_manager_has_nothing(tmp_path):
    (tmp_path / "door.ogg").write_bytes(b"")
    mgr = AudioManager(assets_path=tmp_path)
    mgr.register("door", "door.ogg")
    assert not mgr.exists("door")

def test_play_sfx_logic(manager, mixer_channel):
    handle = manager.play("door", volume=0.5)

    assert isinstance(handle, SoundHandle)
    assert handle.volume == 0.5
    mixer_channel.set_volume.assert_called_with(0.5)
    mixer_channel.play.assert_called_once()
    assert mixer_channel.play.call_args.kwargs["loops"] == 0

def test_looping_handle(manager, mixer_channel):
    handle = manager.add("door", loop=True)
    handle.play()
    assert mixer_channel.play.call_args.kwargs["loops"] == -1

def test_handle_tracks_playback(manager, mixer_channel):
    handle = manager.add("door")
    assert not handle.is_playing

    handle.play()
    mixer_channel.get_busy.return_value = True
    mixer_channel.get_sound.return_value = handle._sound
    assert handle.is_playing

    handle.set_volume(2.0)
    assert handle.volume == 1.0

    handle.stop()
    mixer_channel.stop.assert_called_once()
    assert not handle.is_playing

def test_master_volume_scales_handles(manager, mixer_channel):
    manager.set_master_volume(0.5)
    handle = manager.add("door", volume=0.8)
    assert handle.volume == pytest.approx(0.4)

def test_play_publishes_event(tmp_path, event_bus, mixer_channel):
    received = []
    def on_sfx(event):
        received.append(event)

    (tmp_path / "door.ogg").write_bytes(b"")
    event_bus.subscribe(AudioEvent.SFX_PLAYED, on_sfx)
    mgr = AudioManager(event_bus, assets_path=tmp_path)
    mgr._initialized = True
    mgr.register_many({"door": "door.ogg"})

    mgr.play("door")

    assert len(received) == 1
    assert received[0]["key"] == "door"

def test_no_free_channel(manager, caplog):
    import pygame
    pygame.mixer.find_channel.return_value = None
    handle = manager.add("door")
    handle.play()
    assert not handle.is_playing
    assert "No free mixer channel" in caplog.text
