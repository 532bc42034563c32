import pytest
from engine.core.events import InteractionEvent
from levelscript.dialogue.script import End, Say
from levelscript.zones.triggers import point_in_zone


@pytest.fixture
def zone_session(make_level, make_object, make_tile_layer, make_session):
    """Session with one 32x32 zone 'zone' centred on (80, 80)."""
    def factory(**props):
        level = make_level(
            interactions=[make_object("zone", 64, 64, 32, 32, **props)],
            tile_layers=[make_tile_layer("Roof")],
        )
        return make_session(level)
    return factory


def step_to(session, x, y, dt=16):
    session.actor.set_position(x, y)
    session.update(dt)


def close_dialogue(session):
    while session.dialogue.is_active:
        session.dialogue.confirm()


def test_point_in_zone_is_inclusive():
    assert point_in_zone(96, 96, (80, 80), 32, 32)
    assert point_in_zone(64, 64, (80, 80), 32, 32)
    assert not point_in_zone(96.5, 80, (80, 80), 32, 32)


def test_trigger_fires_on_enter_edge(zone_session, recorder):
    recorder.watch(InteractionEvent.ZONE_ENTERED, InteractionEvent.ZONE_EXITED)
    session = zone_session(trigger="true", dialogue="Welcome", loopDialogue="true")

    step_to(session, 80, 80)
    assert session.dialogue.full_text == "Welcome"
    close_dialogue(session)

    # standing still inside does not fire again
    step_to(session, 80, 80, dt=250)
    step_to(session, 82, 80)
    assert not session.dialogue.is_active

    step_to(session, 0, 0)
    assert len(recorder.of(InteractionEvent.ZONE_EXITED)) == 1

    step_to(session, 80, 80)
    assert session.dialogue.full_text == "Welcome"
    assert len(recorder.of(InteractionEvent.ZONE_ENTERED)) == 2


def test_trigger_once(zone_session, state):
    session = zone_session(trigger="true", dialogue="Once only", triggerOnce="true")

    step_to(session, 80, 80)
    close_dialogue(session)
    step_to(session, 0, 0, dt=250)
    step_to(session, 80, 80)

    assert state.is_interaction_disabled("zone")
    assert not session.dialogue.is_active


def test_layer_switching(zone_session, state):
    session = zone_session(trigger="true", hideLayers="Roof", exitShowLayers="Roof")
    roof = session.level.tile_layers["Roof"]

    step_to(session, 80, 80)
    assert not roof.visible
    assert state.is_layer_hidden("Library", "Roof")
    # no dialogue and no effects: nothing to run
    assert not session.dialogue.is_active

    step_to(session, 0, 0)
    assert roof.visible


def test_trigger_with_fx_only_runs(zone_session, audio):
    session = zone_session(trigger="true", sfx="ding")
    step_to(session, 80, 80)
    assert [key for key, _ in audio.played] == ["ding"]


def test_deny_push_and_cooldown(zone_session, recorder):
    recorder.watch(InteractionEvent.DENIED, InteractionEvent.ZONE_EXITED)
    session = zone_session(deny="true", denyMode="push")

    step_to(session, 70, 80)
    assert session.actor.position == (58, 80)
    assert session.dialogue.full_text == "You can't go there."
    assert recorder.of(InteractionEvent.DENIED)[0]["mode"] == "push"

    close_dialogue(session)
    session.update(250)
    assert len(recorder.of(InteractionEvent.ZONE_EXITED)) == 1

    # back inside within the cooldown: no second denial
    step_to(session, 70, 80)
    assert session.actor.position == (70, 80)
    assert len(recorder.of(InteractionEvent.DENIED)) == 1

    step_to(session, 0, 0, dt=400)
    step_to(session, 70, 80)
    assert len(recorder.of(InteractionEvent.DENIED)) == 2


def test_deny_rewinds_to_previous_position(zone_session):
    session = zone_session(deny="true", denyDialogue="Nope.")

    step_to(session, 40, 80)
    step_to(session, 70, 80)

    assert session.actor.position == (40, 80)
    assert session.dialogue.full_text == "Nope."


def test_deny_feedback(zone_session, audio, camera):
    session = zone_session(deny="true", denySfx="buzz", denyShakeMs="200")

    step_to(session, 70, 80)

    assert ("buzz", 1.0) in audio.played
    camera.shake.assert_called_once_with(200, 0.01)
    assert session.dialogue.full_text == "You can't go there."


def test_zone_audio_and_music_duck(zone_session, audio):
    session = zone_session(zoneAmbience="wind", zoneDuckMusic="true")
    session.audio.set_scene_music("theme", volume=0.6, fade_ms=0)
    music = session.audio.music

    step_to(session, 80, 80)
    wind = audio.playing("wind")[0]
    assert wind.loop
    assert wind.volume == pytest.approx(0.6)
    assert music.volume == pytest.approx(0.6 * 0.35)

    step_to(session, 0, 0)
    assert not wind.is_playing
    assert music.volume == pytest.approx(0.6)


def test_zone_audio_fades_in(zone_session, audio):
    session = zone_session(zoneSfx="wind", zoneVolume="0.8", zoneFadeInMs="400", zoneLoop="false")

    step_to(session, 80, 80)
    wind = audio.playing("wind")[0]
    assert not wind.loop
    assert wind.volume == 0.0

    session.update(400)
    assert wind.volume == pytest.approx(0.8)


def test_ambience_loops_while_inside(zone_session, audio):
    session = zone_session(ambienceKey="birds", ambienceVolumePct="50")

    step_to(session, 80, 80)
    birds = audio.playing("birds")
    assert len(birds) == 1
    assert birds[0].volume == pytest.approx(0.5)

    step_to(session, 81, 80)
    assert len(audio.playing("birds")) == 1

    step_to(session, 0, 0)
    assert audio.playing("birds") == []


def test_ambience_is_tracked_during_dialogue(zone_session, audio):
    session = zone_session(ambienceKey="birds")
    step_to(session, 80, 80)
    assert audio.playing("birds")

    session.dialogue.start([Say("", "hold on"), End()])
    step_to(session, 0, 0)

    assert session.dialogue.is_active
    assert audio.playing("birds") == []


def test_zones_wait_for_interact_lock(zone_session, state):
    session = zone_session(trigger="true", dialogue="Welcome")
    state.lock_interact(session.clock.now_ms, 1000)

    step_to(session, 80, 80)
    assert not session.dialogue.is_active

    session.update(1000)
    assert session.dialogue.full_text == "Welcome"
