import pytest
from engine.core.events import InteractionEvent
from levelscript.dialogue.runner import DialogueState
from levelscript.state.flags import FlagKey, FlagNamespace


@pytest.fixture
def desk_session(make_level, make_object, make_session):
    """Session over a level whose interaction 'desk' carries the given properties."""
    def factory(**props):
        level = make_level(interactions=[make_object("desk", 32, 32, **props)])
        return make_session(level)
    return factory


def use(session, interaction_id="desk"):
    session.interactions.run(session.registry.get(interaction_id))


def finish(session):
    """Confirm through the open dialogue until it closes."""
    for _ in range(20):
        if not session.dialogue.is_active:
            return
        session.dialogue.confirm()
    raise AssertionError("dialogue did not close")


def test_progressive_lines_apply_effects_on_last(desk_session, state):
    session = desk_session(dialogue="one", dialogue2="two", giveItem="coin")

    use(session)
    assert session.dialogue.full_text == "one"
    finish(session)
    assert state.item_count("coin") == 0

    use(session)
    assert session.dialogue.full_text == "two"
    finish(session)
    assert state.item_count("coin") == 1

    # later uses keep showing the last line and re-run its effects
    use(session)
    assert session.dialogue.full_text == "two"
    finish(session)
    assert state.item_count("coin") == 2


def test_action_runs_through_registry(desk_session):
    session = desk_session(dialogue="hello")
    session.registry.get("desk").action()
    assert session.dialogue.full_text == "hello"


def test_end_dialogue_marks_final_line(desk_session, state):
    session = desk_session(dialogue="a", dialogue2="b", dialogue3="c", endDialogue="2", giveItem="coin")

    use(session)
    finish(session)
    use(session)
    assert session.dialogue.full_text == "b"
    finish(session)

    assert state.item_count("coin") == 1


def test_loop_dialogue_never_completes(desk_session, state):
    session = desk_session(dialogue="a", dialogue2="b", loopDialogue="true", giveItem="coin")

    seen = []
    for _ in range(3):
        use(session)
        seen.append(session.dialogue.full_text)
        finish(session)

    assert seen == ["a", "b", "a"]
    assert state.item_count("coin") == 0


def test_sequence_plays_current_through_last(desk_session, state):
    session = desk_session(dialogue="a", dialogue2="b", dialogue3="c", sequenceDialogue="true", giveItem="coin")

    use(session)
    seen = [session.dialogue.full_text]
    while session.dialogue.confirm() and session.dialogue.is_active:
        seen.append(session.dialogue.full_text)
    assert seen == ["a", "b", "c"]
    assert state.item_count("coin") == 1

    use(session)
    assert session.dialogue.full_text == "b"
    finish(session)
    assert state.item_count("coin") == 2


def test_missing_item_denies(desk_session, state, recorder):
    recorder.watch(InteractionEvent.DENIED, InteractionEvent.TRIGGERED)
    session = desk_session(requiresItem="key", denyDialogue="Locked.", dialogue="It opens.")

    use(session)

    assert session.dialogue.full_text == "Locked."
    assert recorder.of(InteractionEvent.DENIED)[0]["missing"] == "key"
    assert recorder.of(InteractionEvent.TRIGGERED) == []
    assert state.interaction_count("desk") == 0


def test_default_deny_line(desk_session):
    session = desk_session(requiresItem="key", dialogue="It opens.")
    use(session)
    assert session.dialogue.full_text == "You can't do that yet."


def test_requirements_are_remembered(desk_session, state):
    session = desk_session(requiresItem="key", dialogue="It opens.", loopDialogue="true")
    state.add_item("key")

    use(session)
    finish(session)
    state.remove_item("key")
    use(session)

    assert session.dialogue.full_text == "It opens."
    assert state.has_key(FlagKey.of(FlagNamespace.REQUIREMENTS_MET, "Library", "desk"))


def test_helped_interaction_uses_post_help_lines(desk_session, state):
    session = desk_session(speaker="Mira", dialogue="Help me", markHelped="Mira", postDialogue="Thanks!")

    use(session)
    assert (session.dialogue.speaker, session.dialogue.full_text) == ("Mira", "Help me")
    finish(session)
    assert state.is_helped("Mira")

    use(session)
    assert session.dialogue.full_text == "Thanks!"
    finish(session)
    assert state.interaction_count("desk") == 1


def test_helped_skips_requirements(desk_session, state):
    state.mark_helped("Mira")
    session = desk_session(speaker="Mira", requiresItem="key", dialogue="Help me", postDialogue="Thanks!")
    use(session)
    assert session.dialogue.full_text == "Thanks!"


def test_choice_interaction(desk_session, state):
    session = desk_session(
        dialogue="Well?",
        choicePrompt="Pick one",
        choice1Text="Yes",
        choice2Text="No",
        choice1Dialogue="Great",
        choice2Dialogue="Oh",
        choice2HelpScore="3",
    )
    dialogue = session.dialogue

    use(session)
    assert dialogue.full_text == "Well?"
    dialogue.confirm()
    assert dialogue.status is DialogueState.IN_CHOICE
    assert [o.text for o in dialogue.choice_options] == ["Yes", "No"]

    dialogue.move_down()
    dialogue.confirm()
    assert dialogue.full_text == "Oh"
    finish(session)

    assert state.get_interaction_choice("desk") == 2
    assert state.help_score == 3


def test_no_dialogue_applies_effects_at_once(desk_session, state):
    session = desk_session(giveItem="coin")
    use(session)
    assert not session.dialogue.is_active
    assert state.item_count("coin") == 1


def test_no_dialogue_flag(desk_session, state):
    session = desk_session(dialogue="ignored", noDialogue="true", giveItem="coin")
    use(session)
    assert not session.dialogue.is_active
    assert state.item_count("coin") == 1


def test_follower_talk_without_dialogue(desk_session, state):
    state.set_companion("saga", True)
    session = desk_session(followDialogue="Saga: Nice spot.", followPauseMs="0", giveItem="coin")

    use(session)
    assert (session.dialogue.speaker, session.dialogue.full_text) == ("Saga", "Nice spot.")
    finish(session)

    assert state.item_count("coin") == 1


def test_presfx_delays_the_body(desk_session, audio):
    session = desk_session(preSfx="creak", preSfxBase="50", preSfxDelayMs="200", dialogue="Hello")

    use(session)
    assert audio.played == [("creak", 0.5)]
    assert not session.dialogue.is_active

    session.update(100)
    assert not session.dialogue.is_active
    session.update(100)
    assert session.dialogue.full_text == "Hello"


def test_presfx_once(desk_session, audio):
    session = desk_session(preSfx="creak", preSfxOnce="true", dialogue="Hello", loopDialogue="true")
    use(session)
    finish(session)
    use(session)
    assert [key for key, _ in audio.played] == ["creak"]


def test_cancel_pending_drops_delayed_body(desk_session):
    session = desk_session(preSfx="creak", preSfxDelayMs="200", dialogue="Hello")
    use(session)
    session.interactions.cancel_pending()
    session.update(300)
    assert not session.dialogue.is_active


def test_sfx_volume_grows_with_use(desk_session, audio):
    session = desk_session(sfx="ding")
    use(session)
    use(session)
    assert audio.played == [("ding", 0.2), ("ding", 0.25)]


def test_sfx_once(desk_session, audio):
    session = desk_session(sfx="ding", sfxOnce="true")
    use(session)
    use(session)
    assert len(audio.played) == 1


def test_sfx_limited_uses(desk_session, audio):
    limited = desk_session(sfx="ding", sfxUses="2")
    for _ in range(3):
        use(limited)
    assert len(audio.played) == 2


def test_music_ducked_during_dialogue(desk_session):
    session = desk_session(dialogue="Shh", duckMusic="true", duckMusicFactor="0.5")
    session.audio.set_scene_music("theme", volume=0.6, fade_ms=0)
    music = session.audio.music

    use(session)
    assert music.volume == pytest.approx(0.3)
    finish(session)
    assert music.volume == pytest.approx(0.6)


def test_duck_released_after_cancel(desk_session):
    session = desk_session(dialogue="Shh", muteMusic="true")
    session.audio.set_scene_music("theme", volume=0.6, fade_ms=0)
    music = session.audio.music

    use(session)
    assert music.volume == 0
    session.dialogue.cancel()
    session.update(16)

    assert music.volume == pytest.approx(0.6)


def test_line_give_once(desk_session, state):
    session = desk_session(dialogue="Take this", dialogueGiveItem="pen", dialogueGiveOnce="true", loopDialogue="true")
    for _ in range(2):
        use(session)
        finish(session)
    assert state.item_count("pen") == 1


def test_line_give_repeats_without_once(desk_session, state):
    session = desk_session(dialogue="Take this", dialogueGiveItem="pen", loopDialogue="true")
    for _ in range(2):
        use(session)
        finish(session)
    assert state.item_count("pen") == 2


def test_line_help_applies_once(desk_session, state):
    session = desk_session(dialogue="Thanks", dialogueAddHelp="4", loopDialogue="true")
    for _ in range(2):
        use(session)
        finish(session)
    assert state.help_score == 4


def test_line_sfx_stops_with_dialogue(desk_session, audio):
    session = desk_session(dialogue="Ring", dialogueSfx="chime")
    use(session)
    assert audio.playing("chime")
    finish(session)
    assert not audio.playing("chime")


def test_persistent_line_sfx_outlives_dialogue(desk_session, audio):
    session = desk_session(dialogue="Ring", dialogueSfx="chime", dialogueSfxPersist="true")
    use(session)
    finish(session)
    assert audio.playing("chime")


def test_disabled_interaction_does_nothing(desk_session, state, recorder):
    recorder.watch(InteractionEvent.TRIGGERED)
    session = desk_session(dialogue="hello")
    state.disable_interaction("desk")

    use(session)

    assert not session.dialogue.is_active
    assert recorder.of(InteractionEvent.TRIGGERED) == []


def test_triggered_event_and_shake(desk_session, recorder, camera):
    recorder.watch(InteractionEvent.TRIGGERED)
    session = desk_session(dialogue="boom", shake="300")

    use(session)

    assert recorder.of(InteractionEvent.TRIGGERED)[0]["interaction_id"] == "desk"
    camera.shake.assert_called_once_with(300, 0.01)
