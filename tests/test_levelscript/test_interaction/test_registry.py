import logging

from engine.core.events import InteractionEvent
from levelscript.interaction.registry import set_forced_disabled, set_forced_enabled, tile_removed_key
from levelscript.npc.mover import SpawnedNpc


def test_build_skips_objects_without_id(make_level, make_object, make_session):
    level = make_level(interactions=[make_object("", 0, 0), make_object("desk", 32, 32)])
    session = make_session(level)
    assert [item.id for item in session.registry] == ["desk"]


def test_id_property_wins_over_name(make_level, make_object, make_session):
    level = make_level(interactions=[make_object("Desk Object", 0, 0, id="desk")])
    session = make_session(level)
    assert "desk" in session.registry


def test_duplicate_ids_keep_the_first(make_level, make_object, make_session, caplog):
    level = make_level(interactions=[
        make_object("desk", 0, 0, prompt="First"),
        make_object("desk", 64, 64, prompt="Second"),
    ])
    with caplog.at_level(logging.WARNING):
        session = make_session(level)

    assert len(session.registry) == 1
    assert session.registry.get("desk").prompt == "First"
    assert "Duplicate interaction id 'desk'" in caplog.text


def test_registered_events(make_level, make_object, make_session, recorder):
    recorder.watch(InteractionEvent.REGISTERED)
    make_session(make_level(interactions=[make_object("a", 0, 0), make_object("b", 32, 0)]))
    assert [e["interaction_id"] for e in recorder.of(InteractionEvent.REGISTERED)] == ["a", "b"]


def test_trigger_defaults(make_level, make_object, make_session):
    level = make_level(interactions=[
        make_object("zone", 0, 0, 64, 64, trigger="true"),
        make_object("auto", 0, 0, autoFire="true", selectable="true"),
        make_object("desk", 0, 0),
    ])
    registry = make_session(level).registry

    assert not registry.get("zone").selectable
    assert registry.get("zone").is_zone
    assert registry.get("auto").selectable
    assert registry.get("desk").selectable
    assert not registry.get("desk").is_zone
    assert registry.get("desk").prompt == "Interact"


def test_enablement_chain(make_level, make_object, make_session, state):
    level = make_level(interactions=[make_object("desk", 0, 0, enabledIfFlags="a, b", disabledIfFlag="c")])
    session = make_session(level)
    desk = session.registry.get("desk")

    assert not desk.is_enabled()
    state.set_flag("a")
    state.set_flag("b")
    assert desk.is_enabled()
    state.set_flag("c")
    assert not desk.is_enabled()

    # forced-enabled overrides the flag gates, forced-disabled overrides everything
    set_forced_enabled(state, "Library", "desk", True)
    assert desk.is_enabled()
    set_forced_disabled(state, "Library", "desk", True)
    assert not desk.is_enabled()


def test_any_flag_gate(make_level, make_object, make_session, state):
    level = make_level(interactions=[make_object("desk", 0, 0, enabledIfAnyFlags="a, b")])
    desk = make_session(level).registry.get("desk")
    assert not desk.is_enabled()
    state.set_flag("b")
    assert desk.is_enabled()


def test_permanent_disable_beats_forced_enable(make_level, make_object, make_session, state):
    desk_level = make_level(interactions=[make_object("desk", 0, 0)])
    desk = make_session(desk_level).registry.get("desk")
    set_forced_enabled(state, "Library", "desk", True)
    state.disable_interaction("desk")
    assert not desk.is_enabled()


def test_requires_choice(make_level, make_object, make_session, state):
    level = make_level(interactions=[
        make_object("any", 0, 0, requiresChoice="mira"),
        make_object("second", 0, 0, requiresChoiceId="mira", requiresChoiceValue="2"),
    ])
    registry = make_session(level).registry

    assert not registry.get("any").is_enabled()
    state.set_interaction_choice("mira", 1)
    assert registry.get("any").is_enabled()
    assert not registry.get("second").is_enabled()
    state.set_interaction_choice("mira", 2)
    assert registry.get("second").is_enabled()


def test_find_nearest_by_distance(make_level, make_object, make_session):
    level = make_level(interactions=[
        make_object("near", 0, 0, 0, 0),
        make_object("far", 15, 0, 0, 0),
    ])
    registry = make_session(level).registry
    assert registry.find_nearest((4, 0)).id == "near"
    assert registry.find_nearest((100, 100)) is None


def test_find_nearest_look_cone(make_level, make_object, make_session):
    level = make_level(interactions=[make_object("shelf", 30, 0, 0, 0)])
    registry = make_session(level).registry

    # 30px away: only reachable while looking at it
    assert registry.find_nearest((0, 0), facing=(1, 0)).id == "shelf"
    assert registry.find_nearest((0, 0), facing=(0, 1)) is None


def test_find_nearest_prefers_facing(make_level, make_object, make_session):
    level = make_level(interactions=[
        make_object("left", -10, 0, 0, 0),
        make_object("right", 10, 0, 0, 0),
    ])
    registry = make_session(level).registry
    assert registry.find_nearest((0, 0), facing=(1, 0)).id == "right"
    assert registry.find_nearest((0, 0), facing=(-1, 0)).id == "left"


def test_find_nearest_skips_disabled_and_unselectable(make_level, make_object, make_session, state):
    level = make_level(interactions=[
        make_object("hidden", 0, 0, 0, 0, selectable="false"),
        make_object("desk", 5, 0, 0, 0),
    ])
    registry = make_session(level).registry
    assert registry.find_nearest((0, 0)).id == "desk"
    state.disable_interaction("desk")
    assert registry.find_nearest((0, 0)) is None


def test_npc_bound_interaction_follows_npc(make_level, make_object, make_session):
    level = make_level(
        interactions=[make_object("talk", 0, 0, 0, 0, npcId="guard")],
        points=[make_object("gate", 200, 0, 0, 0)],
    )
    session = make_session(level, npcs=[SpawnedNpc("guard", 100, 0)])
    talk = session.registry.get("talk")

    assert talk.get_pos() == (100, 0)
    assert session.registry.find_nearest((95, 0)).id == "talk"

    session.mover.move_to_point("guard", "gate")
    assert not talk.is_enabled()


def test_reapply_tile_removals(make_level, make_object, make_tile_layer, make_session, state):
    level = make_level(
        interactions=[make_object("crate", 32, 32, tileRemoveLayer="Props")],
        tile_layers=[make_tile_layer("Props")],
    )
    state.set_key(tile_removed_key("Library", "crate"), True)

    session = make_session(level)

    assert level.tile_layers["Props"].get_tile_at(2, 2) == 0
    assert "crate" not in session.registry
    assert state.is_interaction_disabled("crate")
