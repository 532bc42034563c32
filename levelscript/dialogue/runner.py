"""
Dialogue runner - frame-driven state machine over a DialogueScript.

States:
    IDLE -> start() -> TYPING (say / choice prompt) or PAUSED (pause step)
    TYPING --confirm--> AWAITING_ADVANCE (text completed instantly)
    TYPING --timer----> AWAITING_ADVANCE, or IN_CHOICE for a choice step
    AWAITING_ADVANCE --confirm--> next step
    IN_CHOICE --up/down--> selection moves (wraps)
    IN_CHOICE --confirm--> option.on_select, then jump to option.next
    PAUSED --timer--> next step (input ignored)
    any active --cancel--> STOPPED (no completion callback)
    end step / index overflow --> STOPPED (completion callback once)

Every accepted input closes the input gate for a cooldown window so a
single key press cannot both confirm a choice and re-trigger a world
interaction. Stopping, for any reason, locks world interaction briefly
and stops every sound the runner was asked to track.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from engine.core.actions import Action
from engine.core.events import DialogueEvent
from levelscript.config import DialogueConfig
from levelscript.dialogue.script import ActionStep, Choice, ChoiceOption, DialogueScript, End, Pause, Say, Step

if TYPE_CHECKING:
    from engine.audio.manager import SoundHandle
    from engine.core.events import EventBus
    from engine.input.handler import InputHandler
    from levelscript.context import FrameClock
    from levelscript.state.game_state import GameState

logger = logging.getLogger(__name__)

ActionHandler = Callable[[dict[str, Any]], None]


class DialogueState(Enum):
    IDLE = auto()
    TYPING = auto()
    AWAITING_ADVANCE = auto()
    IN_CHOICE = auto()
    PAUSED = auto()
    STOPPED = auto()


class DialogueInput(Enum):
    CONFIRM = auto()
    UP = auto()
    DOWN = auto()
    CANCEL = auto()


_POLLED_INPUTS: tuple[tuple[Action, DialogueInput], ...] = (
    (Action.CANCEL, DialogueInput.CANCEL),
    (Action.CONFIRM, DialogueInput.CONFIRM),
    (Action.MENU_UP, DialogueInput.UP),
    (Action.MENU_DOWN, DialogueInput.DOWN),
)

_ACTIVE_STATES = frozenset({
    DialogueState.TYPING,
    DialogueState.AWAITING_ADVANCE,
    DialogueState.IN_CHOICE,
    DialogueState.PAUSED,
})


class DialogueRunner:
    """
    Executes dialogue scripts one frame at a time.

    Args:
        state: Session state (world-interaction lock lives there)
        clock: Frame clock used for input cooldowns
        input_handler: Polled in update() for confirm/up/down/cancel (optional)
        config: Dialogue timings
        event_bus: Receives DialogueEvents (optional)
        action_handlers: Handlers for named ActionSteps

    Usage:
        runner = DialogueRunner(state, clock, input_handler)
        runner.start(script, on_complete=lambda: print("done"))
        # each frame:
        runner.update(dt_ms)
    """

    def __init__(
        self,
        state: GameState,
        clock: FrameClock,
        input_handler: Optional[InputHandler] = None,
        config: Optional[DialogueConfig] = None,
        event_bus: Optional[EventBus] = None,
        action_handlers: Optional[Mapping[str, ActionHandler]] = None,
    ):
        self.state = state
        self.clock = clock
        self.input = input_handler
        self.config = config or DialogueConfig()
        self.event_bus = event_bus
        self.action_handlers: dict[str, ActionHandler] = dict(action_handlers or {})

        self.status = DialogueState.IDLE
        self.script = DialogueScript()
        self.index = 0
        self.speaker = ""
        self.full_text = ""
        self.visible_chars = 0
        self.choice_options: list[ChoiceOption] = []
        self.choice_index = 0
        self.selected: Optional[ChoiceOption] = None

        self._on_complete: Optional[Callable[[], None]] = None
        self._tracked: list[SoundHandle] = []
        self._typing_elapsed = 0.0
        self._pause_remaining = 0.0
        self._next_input_at = 0.0
        self._choice_ready_at = 0.0
        self._generation = 0

        self._transitions: dict[tuple[DialogueState, DialogueInput], Callable[[], None]] = {
            (DialogueState.TYPING, DialogueInput.CONFIRM): self._finish_typing,
            (DialogueState.AWAITING_ADVANCE, DialogueInput.CONFIRM): self._advance,
            (DialogueState.IN_CHOICE, DialogueInput.CONFIRM): self._confirm_choice,
            (DialogueState.IN_CHOICE, DialogueInput.UP): self._choice_up,
            (DialogueState.IN_CHOICE, DialogueInput.DOWN): self._choice_down,
        }

    # --- Public API ---

    @property
    def is_active(self) -> bool:
        return self.status in _ACTIVE_STATES

    @property
    def visible_text(self) -> str:
        return self.full_text[:self.visible_chars]

    def register_action(self, name: str, handler: ActionHandler) -> None:
        self.action_handlers[name] = handler

    def start(self, script: DialogueScript | list[Step], on_complete: Optional[Callable[[], None]] = None) -> None:
        """Start a script at step 0. A running script is stopped first without its callback."""
        if self.is_active:
            self.stop(call_on_complete=False)

        self._generation += 1
        self.script = script if isinstance(script, DialogueScript) else DialogueScript(list(script))
        self.index = 0
        self.selected = None
        self._on_complete = on_complete
        self.status = DialogueState.IDLE
        self._set_status(DialogueState.TYPING)
        self._gate()
        self._publish(DialogueEvent.STARTED, steps=len(self.script))
        self._run_current_step()

    def stop(self, call_on_complete: bool = True) -> None:
        """
        Stop the dialogue. Safe to call when already stopped.

        Args:
            call_on_complete: Fire the completion callback (False for forced cancel)
        """
        if not self.is_active:
            return

        self.status = DialogueState.STOPPED
        self.speaker = ""
        self.full_text = ""
        self.visible_chars = 0
        self.choice_options = []
        self.choice_index = 0

        for handle in self._tracked:
            handle.stop()
        self._tracked.clear()

        now = self.clock.now_ms
        self.state.lock_interact(now, self.config.close_interact_lock_ms)
        self._gate()
        self._publish(DialogueEvent.ENDED, completed=call_on_complete)

        callback, self._on_complete = self._on_complete, None
        if call_on_complete and callback is not None:
            try:
                callback()
            except Exception:
                logger.exception("Dialogue completion callback failed")

    def cancel(self) -> None:
        self.stop(call_on_complete=False)

    def track_sound(self, handle: Optional[SoundHandle], persist_after_dialogue: bool = False) -> None:
        """Stop ``handle`` when the dialogue closes, unless it should outlive it."""
        if handle is None or persist_after_dialogue:
            return
        self._tracked.append(handle)

    def handle_input(self, inp: DialogueInput) -> bool:
        """
        Feed one input edge to the state machine.

        Returns:
            True if the input was accepted
        """
        if not self.is_active:
            return False
        if inp is DialogueInput.CANCEL:
            self.cancel()
            return True

        handler = self._transitions.get((self.status, inp))
        if handler is None or not self._can_accept():
            return False
        if self.status is DialogueState.IN_CHOICE and inp is DialogueInput.CONFIRM and not self._choice_ready():
            return False

        if inp is DialogueInput.CONFIRM:
            self._gate()
            self.state.lock_interact(self.clock.now_ms, self.config.close_interact_lock_ms)
        else:
            self._gate(self.config.navigation_cooldown_ms)
        handler()
        return True

    def confirm(self) -> bool:
        return self.handle_input(DialogueInput.CONFIRM)

    def move_up(self) -> bool:
        return self.handle_input(DialogueInput.UP)

    def move_down(self) -> bool:
        return self.handle_input(DialogueInput.DOWN)

    def update(self, dt_ms: float) -> None:
        """Advance typing and pause timers, then poll input."""
        if not self.is_active:
            return

        if self.status is DialogueState.TYPING:
            self._tick_typing(dt_ms)
        elif self.status is DialogueState.PAUSED:
            self._pause_remaining -= dt_ms
            if self._pause_remaining <= 0:
                self.index += 1
                self._run_current_step()

        if self.input is not None and self.is_active:
            for action, inp in _POLLED_INPUTS:
                if self.input.is_action_just_pressed(action):
                    self.handle_input(inp)
                    break

    # --- Step execution ---

    def _run_current_step(self) -> None:
        generation = self._generation
        while self.is_active and generation == self._generation:
            if self.index < 0 or self.index >= len(self.script):
                self.stop(call_on_complete=True)
                return

            step = self.script[self.index]
            if isinstance(step, Say):
                self._gate()
                self._begin_typing(step.speaker, step.text)
                self._publish(DialogueEvent.LINE, index=self.index, speaker=step.speaker, text=step.text)
                return
            if isinstance(step, Choice):
                self._gate()
                self._begin_typing("", step.prompt)
                return
            if isinstance(step, Pause):
                ms = float(step.ms if step.ms is not None else self.config.default_pause_ms)
                if ms > 0:
                    self._pause_remaining = ms
                    self._set_status(DialogueState.PAUSED)
                    return
                self.index += 1
                continue
            if isinstance(step, ActionStep):
                self._run_action(step)
                if generation != self._generation:
                    return
                self.index += 1
                continue
            if isinstance(step, End):
                self.stop(call_on_complete=True)
                return
            self.index += 1

    def _run_action(self, step: ActionStep) -> None:
        try:
            if step.run is not None:
                step.run()
                return
            handler = self.action_handlers.get(step.name)
            if handler is None:
                logger.warning("No handler for dialogue action '%s'", step.name)
                return
            handler(step.params)
        except Exception:
            logger.exception("Dialogue action '%s' failed", step.name or "<inline>")

    def _begin_typing(self, speaker: str, text: str) -> None:
        self.speaker = speaker
        self.full_text = text
        self.visible_chars = 0
        self._typing_elapsed = 0.0
        self._set_status(DialogueState.TYPING)
        if self.config.typing_interval_ms <= 0 or not text:
            self._complete_text()

    def _tick_typing(self, dt_ms: float) -> None:
        self._typing_elapsed += dt_ms
        chars = int(self._typing_elapsed // self.config.typing_interval_ms)
        if chars >= len(self.full_text):
            self._complete_text()
        else:
            self.visible_chars = chars

    def _complete_text(self) -> None:
        self.visible_chars = len(self.full_text)
        step = self.script[self.index] if 0 <= self.index < len(self.script) else None
        if isinstance(step, Choice) and step.options:
            self.choice_options = list(step.options)
            self.choice_index = 0
            now = self.clock.now_ms
            self._choice_ready_at = now + max(self.config.choice_confirm_delay_ms, self.config.input_cooldown_ms)
            self._set_status(DialogueState.IN_CHOICE)
            self._publish(DialogueEvent.CHOICE_SHOWN, prompt=step.prompt, options=[o.text for o in step.options])
        else:
            self._set_status(DialogueState.AWAITING_ADVANCE)

    # --- Transition handlers ---

    def _finish_typing(self) -> None:
        self._complete_text()
        self._gate()

    def _advance(self) -> None:
        self.index += 1
        self._run_current_step()

    def _confirm_choice(self) -> None:
        if not self._choice_ready():
            return
        if not (0 <= self.choice_index < len(self.choice_options)):
            return
        chosen = self.choice_options[self.choice_index]
        self.selected = chosen
        self._publish(
            DialogueEvent.CHOICE_SELECTED,
            index=self.choice_index,
            value=chosen.value,
            text=chosen.text,
        )
        generation = self._generation
        if chosen.on_select is not None:
            try:
                chosen.on_select(chosen)
            except Exception:
                logger.exception("Dialogue choice callback failed")
        if generation != self._generation or not self.is_active:
            return

        self.choice_options = []
        self.index = chosen.next if isinstance(chosen.next, int) else self.index + 1
        self._set_status(DialogueState.TYPING)
        self._run_current_step()

    def _choice_up(self) -> None:
        count = len(self.choice_options)
        if count:
            self.choice_index = (self.choice_index - 1) % count

    def _choice_down(self) -> None:
        count = len(self.choice_options)
        if count:
            self.choice_index = (self.choice_index + 1) % count

    # --- Helpers ---

    def _set_status(self, status: DialogueState) -> None:
        if status is not self.status:
            logger.debug("Dialogue %s -> %s (step %d)", self.status.name, status.name, self.index)
        self.status = status

    def _gate(self, ms: Optional[float] = None) -> None:
        cooldown = self.config.input_cooldown_ms if ms is None else ms
        self._next_input_at = max(self._next_input_at, self.clock.now_ms + cooldown)

    def _can_accept(self) -> bool:
        return self.clock.now_ms >= self._next_input_at

    def _choice_ready(self) -> bool:
        return self.clock.now_ms >= self._choice_ready_at

    def _publish(self, event_type: DialogueEvent, **data: Any) -> None:
        if self.event_bus:
            self.event_bus.publish(event_type, **data)
