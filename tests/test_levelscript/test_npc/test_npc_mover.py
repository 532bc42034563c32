import logging

import pytest
from engine.core.events import LevelEvent
from levelscript.errors import RuntimeInconsistency
from levelscript.npc.mover import Facing, NpcRegistry, NpcWaypointMover, SpawnedNpc
from levelscript.state.flags import FlagKey, FlagNamespace


@pytest.fixture
def registry(state):
    return NpcRegistry(state, "Library")


@pytest.fixture
def mover(registry, make_level, make_object, event_bus):
    level = make_level(points=[
        make_object("bench", 100, 0, 0, 0),
        make_object("door", 100, 100, 0, 0),
    ])
    return NpcWaypointMover(registry, level, event_bus=event_bus)


def position_of(state, npc_id):
    return state.get_key(FlagKey.of(FlagNamespace.NPC_POSITION, "Library", npc_id))


# --- Registry ---

def test_register_applies_persisted_overrides(registry, state):
    state.set_key(FlagKey.of(FlagNamespace.NPC_POSITION, "Library", "guard"), {"x": 50, "y": 60})
    state.set_key(FlagKey.of(FlagNamespace.NPC_FLIP, "Library", "guard"), True)
    guard = SpawnedNpc("guard", 0, 0)

    assert registry.register(guard)

    assert guard.position == (50.0, 60.0)
    assert guard.flip_y


def test_duplicate_registration(registry, caplog):
    registry.register(SpawnedNpc("guard"))
    with caplog.at_level(logging.WARNING):
        assert not registry.register(SpawnedNpc("guard"))
    assert len(registry) == 1
    assert "Duplicate NPC id 'guard'" in caplog.text


def test_case_insensitive_lookup(registry):
    guard = SpawnedNpc("Guard")
    registry.register(guard)
    assert registry.get("Guard") is guard
    assert registry.get("guard") is guard
    assert "GUARD" in registry
    assert registry.get("") is None


def test_require_raises(registry):
    with pytest.raises(RuntimeInconsistency):
        registry.require("ghost")


def test_removed_npcs_stay_gone(registry, state):
    guard = SpawnedNpc("guard")
    registry.register(guard)

    assert registry.remove("guard")
    assert guard.destroyed
    assert "guard" not in registry

    other_level = NpcRegistry(state, "Hall")
    again = SpawnedNpc("guard")
    assert not other_level.register(again)
    assert again.destroyed


def test_flip_is_persisted(registry, state):
    registry.register(SpawnedNpc("guard"))
    assert registry.set_flip("guard")
    assert state.get_key(FlagKey.of(FlagNamespace.NPC_FLIP, "Library", "guard")) is True
    assert not registry.set_flip("ghost")


def test_persist_all_skips(registry, state):
    registry.register(SpawnedNpc("guard", 10, 20))
    registry.register(SpawnedNpc("cat", 1, 2))

    registry.persist_all(skip={"cat"})

    assert position_of(state, "guard") == {"x": 10, "y": 20}
    assert position_of(state, "cat") is None


# --- Mover ---

def test_walk_to_point(registry, mover, state, recorder):
    recorder.watch(LevelEvent.NPC_ARRIVED)
    guard = SpawnedNpc("guard", 0, 0)
    registry.register(guard)

    assert mover.move_along("guard", [(100, 0)], speed=50)
    # destination is persisted up front
    assert position_of(state, "guard") == {"x": 100, "y": 0}
    assert mover.is_moving("guard")

    mover.update(1000)
    assert guard.position == pytest.approx((50, 0))
    assert guard.vx == pytest.approx(50)
    assert guard.facing is Facing.RIGHT
    assert guard.anim == "walk_right"

    mover.update(900)
    assert guard.position == (100, 0)
    assert not mover.is_moving("guard")
    assert guard.vx == 0
    assert guard.anim == "idle_right"
    assert recorder.of(LevelEvent.NPC_ARRIVED)[0]["npc_id"] == "guard"


def test_walk_stops_on_the_tick_it_lands(registry, mover):
    guard = SpawnedNpc("guard", 0, 0)
    registry.register(guard)
    mover.move_along("guard", [(10, 0)], speed=40)

    mover.update(1000)

    assert guard.position == (10, 0)
    assert not mover.is_moving("guard")
    assert guard.vx == 0


def test_walk_named_waypoints(registry, mover):
    guard = SpawnedNpc("guard", 100, 0)
    registry.register(guard)

    assert mover.move_along_named("guard", ["bench", "door"], speed=100)
    mover.update(16)
    for _ in range(200):
        if not mover.is_moving("guard"):
            break
        mover.update(50)

    assert guard.position == (100, 100)
    assert guard.facing is Facing.DOWN


def test_missing_points_are_skipped(registry, mover, caplog):
    registry.register(SpawnedNpc("guard"))
    with caplog.at_level(logging.WARNING):
        assert mover.resolve_points(["bench", "nowhere"]) == [(100, 0)]
        assert not mover.move_along_named("guard", ["nowhere"])
    assert "Point 'nowhere' not found" in caplog.text


def test_unknown_npc(mover, caplog):
    with caplog.at_level(logging.WARNING):
        assert not mover.move_to_point("ghost", "bench")
    assert "NPC not registered: 'ghost'" in caplog.text


def test_stop(registry, mover):
    guard = SpawnedNpc("guard")
    registry.register(guard)
    mover.move_to_point("guard", "bench")
    mover.update(100)

    mover.stop("guard")

    assert not mover.is_moving("guard")
    assert guard.vx == 0


def test_destroyed_npc_drops_its_walk(registry, mover):
    registry.register(SpawnedNpc("guard"))
    mover.move_to_point("guard", "bench")
    registry.remove("guard")
    mover.update(16)
    assert mover.moving_ids == set()


@pytest.mark.parametrize("dx, dy, facing", [
    (5, 0, Facing.RIGHT),
    (-5, 1, Facing.LEFT),
    (0, 3, Facing.DOWN),
    (1, -3, Facing.UP),
    (2, 2, Facing.RIGHT),
])
def test_facing_from_vector(dx, dy, facing):
    assert Facing.from_vector(dx, dy) is facing
