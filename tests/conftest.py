import os
import sys
import pytest
from unittest.mock import MagicMock, patch

# Ensure engine and levelscript can be imported
sys.path.append(os.getcwd())


@pytest.fixture(autouse=True)
def mock_pygame():
    """
    Global mock for pygame to allow headless testing.
    Autoused for all tests so no test opens a window or an audio device.
    """
    with patch('pygame.init'), \
         patch('pygame.display'), \
         patch('pygame.event'), \
         patch('pygame.time'), \
         patch('pygame.mixer'), \
         patch('pygame.key'):

        import pygame
        pygame.time.get_ticks = MagicMock(return_value=0)

        yield


# --- Fakes ---

class FakeSound:
    """SoundHandle stand-in: remembers volume, loop and whether it plays."""

    def __init__(self, key, loop=False, volume=1.0):
        self.key = key
        self.loop = loop
        self.volume = volume
        self.is_playing = False
        self.play_count = 0

    def play(self):
        self.is_playing = True
        self.play_count += 1

    def stop(self):
        self.is_playing = False

    def set_volume(self, volume):
        self.volume = max(0.0, min(1.0, float(volume)))


class FakeAudioManager:
    """AudioManager stand-in with a fixed set of loaded keys."""

    def __init__(self, keys=()):
        self.keys = set(keys)
        self.handles = []
        self.played = []

    def exists(self, key):
        return key in self.keys

    def add(self, key, loop=False, volume=1.0):
        if key not in self.keys:
            return None
        handle = FakeSound(key, loop, volume)
        self.handles.append(handle)
        return handle

    def play(self, key, volume=1.0):
        handle = self.add(key, loop=False, volume=volume)
        if handle is None:
            return None
        handle.play()
        self.played.append((key, handle.volume))
        return handle

    def playing(self, key):
        return [h for h in self.handles if h.key == key and h.is_playing]


class FakeInput:
    """Input collaborator: a pressed action reads as 'just pressed' exactly once."""

    def __init__(self):
        self._pending = set()

    def press(self, action):
        self._pending.add(action)

    def is_action_just_pressed(self, action):
        if action in self._pending:
            self._pending.discard(action)
            return True
        return False


class EventRecorder:
    """Collects published events of the watched types."""

    def __init__(self, bus):
        self.bus = bus
        self.events = []

    def watch(self, *event_types):
        for event_type in event_types:
            self.bus.subscribe(event_type, self._on_event, weak=False)
        return self

    def _on_event(self, event):
        self.events.append(event)

    def of(self, event_type):
        return [e for e in self.events if e.type is event_type]


# --- Level data builders ---

def tiled_object(name, x=0, y=0, width=16, height=16, **props):
    obj = {"name": name, "x": x, "y": y, "width": width, "height": height}
    if width <= 0 and height <= 0:
        obj["point"] = True
    if props:
        obj["properties"] = [{"name": k, "value": v} for k, v in props.items()]
    return obj


def tile_layer(name, size=20, tiles=None, visible=True, **props):
    layer = {
        "type": "tilelayer",
        "name": name,
        "width": size,
        "height": size,
        "data": list(tiles) if tiles is not None else [1] * (size * size),
        "visible": visible,
    }
    if props:
        layer["properties"] = [{"name": k, "value": v} for k, v in props.items()]
    return layer


def level_data(interactions=(), colliders=(), points=(), npcs=(), tile_layers=(), size=20):
    layers = [tile_layer("Ground", size), *tile_layers]
    layers.extend([
        {"type": "group", "name": "Objects", "layers": [
            {"type": "objectgroup", "name": "Interactions", "objects": list(interactions)},
        ]},
        {"type": "objectgroup", "name": "Colliders", "objects": list(colliders)},
        {"type": "objectgroup", "name": "Points", "objects": list(points)},
        {"type": "objectgroup", "name": "NPCs", "objects": list(npcs)},
    ])
    return {"width": size, "height": size, "tilewidth": 16, "tileheight": 16, "layers": layers}


# --- Fixtures ---

@pytest.fixture
def event_bus():
    """Fresh EventBus for each test."""
    from engine.core.events import EventBus
    return EventBus()


@pytest.fixture
def recorder(event_bus):
    return EventRecorder(event_bus)


@pytest.fixture
def state():
    from levelscript.state.game_state import GameState
    return GameState()


@pytest.fixture
def config():
    """Engine config with instant typing and no input cooldowns."""
    from levelscript.config import DialogueConfig, EngineConfig
    return EngineConfig(dialogue=DialogueConfig(
        typing_interval_ms=0,
        input_cooldown_ms=0,
        choice_confirm_delay_ms=0,
        navigation_cooldown_ms=0,
    ))


@pytest.fixture
def audio():
    return FakeAudioManager({"theme", "forest", "ding", "creak", "wind", "birds", "chime", "buzz"})


@pytest.fixture
def fake_input():
    return FakeInput()


@pytest.fixture
def camera():
    return MagicMock()


@pytest.fixture
def clock():
    from levelscript.context import FrameClock
    return FrameClock()


@pytest.fixture
def make_object():
    return tiled_object


@pytest.fixture
def make_tile_layer():
    return tile_layer


@pytest.fixture
def make_level_data():
    return level_data


@pytest.fixture
def make_level():
    """Factory: LevelMap named 'Library' from objects and extra tile layers."""
    from levelscript.level.map import LevelMap

    def factory(**kwargs):
        return LevelMap.from_dict(level_data(**kwargs), name="Library")
    return factory


@pytest.fixture
def make_session(state, config, audio, fake_input, camera, event_bus):
    """Factory: LevelSession over fakes, entered unless enter=False."""
    from levelscript.session import LevelSession

    def factory(level, scene="Library", game_state=None, enter=True, npcs=None, engine_config=None):
        session = LevelSession(
            scene,
            level,
            game_state if game_state is not None else state,
            audio,
            engine_config or config,
            input_handler=fake_input,
            camera=camera,
            event_bus=event_bus,
        )
        if enter:
            session.enter(npcs)
        return session
    return factory
