"""
Interaction runner.

Executes one interactable when the player uses it (or a zone fires it):
requirement gating, the post-help path, use counting, pre/main sound
effects, music ducking, and finally the dialogue that ends in effects.

Flow of run():
    disabled? -> stop
    requiresItem missing -> deny line, stop
    already helped -> post-help lines (progressive), no effects
    count the use -> preSfx (optionally delayed) -> shake + sfx
    choicePrompt -> choice dialogue, choice N effects on completion
    no dialogue -> follower talk or immediate effects
    sequenceDialogue -> the current line through the last, effects on completion
    otherwise -> the line for this use, effects once the last line is reached
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from engine.core.events import InteractionEvent
from levelscript.dialogue.builder import LINE_GIVE, LINE_HELP, LINE_SCORE, LINE_SFX, ScriptBuilder
from levelscript.dialogue.script import Choice, ChoiceOption, DialogueScript, End, Say, Step
from levelscript.interaction.effects import EffectApplier, EffectEvent
from levelscript.interaction.schema import SfxEffect
from levelscript.props import clamp
from levelscript.state.flags import FlagKey, FlagNamespace

if TYPE_CHECKING:
    from levelscript.context import LevelContext
    from levelscript.dialogue.runner import DialogueRunner
    from levelscript.interaction.registry import Interactable, InteractionRegistry
    from levelscript.props import PropertyTable

logger = logging.getLogger(__name__)


class InteractionRunner:
    """
    Runs interactables through dialogue into effects.

    Args:
        ctx: Level context
        registry: Interactables of the level; the runner installs itself as their action
        dialogue: Dialogue runner shared by the level
        applier: Effect applier (one bound to ``registry`` by default)

    Usage:
        runner = InteractionRunner(ctx, registry, dialogue)
        registry.find_nearest(ctx.actor.position, ctx.actor.facing()).action()
        # each frame:
        runner.update(dt_ms)
    """

    def __init__(
        self,
        ctx: LevelContext,
        registry: InteractionRegistry,
        dialogue: DialogueRunner,
        applier: Optional[EffectApplier] = None,
    ):
        self.ctx = ctx
        self.registry = registry
        self.dialogue = dialogue
        self.applier = applier or EffectApplier(registry)
        self._delayed: list[tuple[float, Callable[[], None]]] = []
        self._ducked = False

        registry.on_action = self.run
        dialogue.register_action(LINE_SFX, self._line_sfx)
        dialogue.register_action(LINE_GIVE, self._line_give)
        dialogue.register_action(LINE_HELP, self._line_help)
        dialogue.register_action(LINE_SCORE, self._line_score)

    # --- Frame ---

    def update(self, dt_ms: float) -> None:
        """Run delayed interaction bodies that are due; release a duck left by a cancelled dialogue."""
        if self._delayed:
            now = self.ctx.now_ms
            due = [call for at, call in self._delayed if at <= now]
            self._delayed = [(at, call) for at, call in self._delayed if at > now]
            for call in due:
                call()
        if self._ducked and not self.dialogue.is_active:
            self._release_duck()

    def cancel_pending(self) -> None:
        self._delayed.clear()
        self._release_duck()

    # --- Entry point ---

    def run(self, item: Interactable) -> None:
        ctx = self.ctx
        state = ctx.state
        props = item.props
        if not item.id or state.is_interaction_disabled(item.id):
            return

        builder = ScriptBuilder(props, item.id, ctx.scene, state, ctx.config)
        helped_key = builder.post_help_key()
        helped = bool(helped_key) and state.is_helped(helped_key)

        if not self._requirements_met(item, builder, helped):
            return

        ctx.publish(InteractionEvent.TRIGGERED, interaction_id=item.id)
        duck = _duck_factor(props)

        if helped:
            self._run_post_help(item, builder, duck)
            return

        use = state.increment_interaction_count(item.id)
        pre_key = props.text("presfx")
        if pre_key and (not props.flag("presfxonce") or use == 1):
            ctx.audio.play_sfx(pre_key, clamp(props.number("presfxbase", 100), 0, 100) / 100)
            delay = clamp(props.number("presfxdelayms", 0), 0, 3000)
            if delay > 0:
                self._delayed.append((ctx.now_ms + delay, lambda: self._run_main(item, builder, use, duck)))
                return
        self._run_main(item, builder, use, duck)

    # --- Stages ---

    def _requirements_met(self, item: Interactable, builder: ScriptBuilder, helped: bool) -> bool:
        props = item.props
        state = self.ctx.state
        required = props.csv("requiresitem")
        if not required:
            return True

        met_key = FlagKey.of(FlagNamespace.REQUIREMENTS_MET, self.ctx.scene, item.id)
        if state.has_key(met_key):
            return True
        if props.flag("requiresitemskipifhelped", default=True) and helped:
            return True
        if props.flag("requiresitemonce") and state.interaction_count(item.id) > 0:
            return True

        for name in required:
            if not state.has_item(name):
                deny = props.text("denydialogue", self.ctx.config.dialogue.default_deny_text)
                logger.debug("Interaction '%s' denied: missing item '%s'", item.id, name)
                self.ctx.publish(InteractionEvent.DENIED, interaction_id=item.id, missing=name)
                self._start([Say("", deny), End()])
                return False

        state.set_key(met_key, True)
        return True

    def _run_post_help(self, item: Interactable, builder: ScriptBuilder, duck: Optional[float]) -> None:
        last_choice = self.ctx.state.get_interaction_choice(item.id)
        prompt = builder.post_help_prompt(last_choice)
        if prompt:
            item.prompt = prompt

        script = DialogueScript(builder.post_help_steps(last_choice))
        if len(script) or builder.has_follower_props():
            builder.apply_follower_dialogue(script, replace=True)
            if len(script):
                script.append(End())
                self._start(script, duck=duck)

    def _run_main(self, item: Interactable, builder: ScriptBuilder, use: int, duck: Optional[float]) -> None:
        ctx = self.ctx
        props = item.props

        shake = props.number("shake", 0) or 0
        if shake > 0:
            ctx.shake.stack(shake)

        sfx_key = props.text("sfx")
        if sfx_key:
            sfx = SfxEffect(
                key=sfx_key,
                once=props.flag("sfxonce"),
                uses=int(clamp(props.number("sfxuses", 0) or 0, 0, 999)),
            )
            if sfx.allowed(use):
                ctx.audio.play_scaled_sfx(sfx_key, use, props.get("sfxbase"), props.get("sfxstep"), props.get("sfxmax"))

        if props.text("choiceprompt") and props.text("choice1text"):
            self._run_choice(item, builder, duck)
            return

        prefix = builder.variant_prefix("dialogue")
        keys = builder.keys(prefix)
        if not keys or props.flag("nodialogue"):
            self._run_without_dialogue(item, builder, duck)
            return

        end_n = int(clamp(props.integer("enddialogue", len(keys)) or len(keys), 1, len(keys)))
        loop = props.flag("loopdialogue")
        line_index = ((use - 1) % end_n) + 1 if loop else min(use, end_n)

        if props.flag("sequencedialogue") and not loop:
            steps = builder.sequence(keys, line_index, end_n)
            if not steps:
                self.complete(item)
                return
            self._start([*steps, End()], on_complete=lambda: self.complete(item), duck=duck)
            return

        key = prefix if line_index == 1 else f"{prefix}{line_index}"
        text = props.text(key) or props.text(prefix)
        is_final = not loop and line_index == end_n

        script = DialogueScript(list(builder.line_actions(key)))
        script.append(Say(builder.resolve_speaker(prefix, key), text))
        builder.apply_follower_dialogue(script, replace=True)
        script.append(End())

        on_complete = (lambda: self.complete(item)) if is_final else None
        self._start(script, on_complete=on_complete, duck=duck)

    def _run_without_dialogue(self, item: Interactable, builder: ScriptBuilder, duck: Optional[float]) -> None:
        if builder.has_follower_props():
            script = DialogueScript()
            if builder.apply_follower_dialogue(script, replace=True):
                script.append(End())
                self._start(script, on_complete=lambda: self.complete(item), duck=duck)
                return
        self.complete(item)

    def _run_choice(self, item: Interactable, builder: ScriptBuilder, duck: Optional[float]) -> None:
        props = item.props
        script = DialogueScript()

        intro_prefix = builder.variant_prefix("dialogue")
        intro_keys = builder.keys(intro_prefix)
        if props.flag("sequencedialogue"):
            script.extend(builder.sequence(intro_keys))
        else:
            for key in intro_keys:
                script.extend(builder.line(intro_prefix, key))

        choice = Choice(props.text("choiceprompt", "Choose"))
        script.append(choice)

        for number in range(1, self.ctx.config.interaction.max_choices + 1):
            label = props.text(f"choice{number}text")
            if not label:
                continue
            start = len(script)
            script.extend(builder.from_prefix(builder.variant_prefix(f"choice{number}dialogue")))
            script.append(End())
            choice.options.append(ChoiceOption(label, next=start, value=number))

        self._start(script, on_complete=lambda: self._complete_choice(item), duck=duck)

    # --- Completion ---

    def complete(self, item: Interactable) -> None:
        """Apply the interaction's completion effects."""
        self.applier.apply(item.id, item.props, self.ctx, EffectEvent.COMPLETE)

    def _complete_choice(self, item: Interactable) -> None:
        selected = self.dialogue.selected
        if selected is None or not selected.value:
            return
        self.applier.apply(item.id, item.props, self.ctx, EffectEvent.choice(int(selected.value)))

    # --- Dialogue plumbing ---

    def _start(
        self,
        script: DialogueScript | list[Step],
        on_complete: Optional[Callable[[], None]] = None,
        duck: Optional[float] = None,
    ) -> None:
        self._release_duck()
        if duck is not None:
            self.ctx.audio.push_duck(duck)
            self._ducked = True

        def finish() -> None:
            try:
                if on_complete is not None:
                    on_complete()
            finally:
                self._release_duck()

        self.dialogue.start(script, on_complete=finish)

    def _release_duck(self) -> None:
        if self._ducked:
            self._ducked = False
            self.ctx.audio.pop_duck()

    # --- Line actions ---

    def _claim(self, once_key: Any) -> bool:
        if not once_key:
            return True
        return self.ctx.state.guard_once(FlagKey.decode(str(once_key)))

    def _line_sfx(self, params: dict[str, Any]) -> None:
        if not self._claim(params.get("once_key")):
            return
        handle = self.ctx.audio.play_sfx(str(params.get("key", "")), float(params.get("volume", 1.0)))
        if params.get("track", True):
            self.dialogue.track_sound(handle)

    def _line_give(self, params: dict[str, Any]) -> None:
        if self._claim(params.get("once_key")):
            self.ctx.state.add_item(str(params.get("item", "")), int(params.get("count", 1)))

    def _line_help(self, params: dict[str, Any]) -> None:
        if self._claim(params.get("once_key")):
            self.ctx.state.add_help(params.get("amount", 0))

    def _line_score(self, params: dict[str, Any]) -> None:
        if self._claim(params.get("once_key")):
            self.ctx.state.add_score(params.get("amount", 0))


def _duck_factor(props: PropertyTable) -> Optional[float]:
    """Duck factor requested by muteMusic / duckMusic, or None."""
    if not (props.flag("mutemusic") or props.flag("duckmusic")):
        return None
    return clamp(props.number("duckmusicfactor", 0) or 0, 0.0, 1.0)
