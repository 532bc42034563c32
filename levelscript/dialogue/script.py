"""
Dialogue scripts.

A script is an ordered list of typed steps. Choice options jump to an
absolute step index inside the same script, so several options can share
one branch body. Action steps name a handler kind plus parameters
instead of capturing a closure, which keeps whole scripts serialisable.

Usage:
    script = DialogueScript([
        Say("Mira", "Which book?"),
        Choice("Pick one", [ChoiceOption("Atlas", next=2, value=1)]),
        Say("Mira", "Good choice."),
        End(),
    ])
    data = script.to_dict()
    assert DialogueScript.from_dict(data) == script
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Iterator, Optional, Union


@dataclass
class Say:
    speaker: str = ""
    text: str = ""
    kind: ClassVar[str] = "say"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "speaker": self.speaker, "text": self.text}


@dataclass
class Pause:
    ms: float = 400
    kind: ClassVar[str] = "pause"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "ms": self.ms}


@dataclass
class ChoiceOption:
    """
    One selectable option.

    Attributes:
        text: Label shown to the player
        next: Absolute step index to continue at (None = the step after the choice)
        value: Value recorded as the selection (the 1-based choice number for scripted choices)
        on_select: Optional callback, fired before the jump
    """
    text: str
    next: Optional[int] = None
    value: Optional[int] = None
    on_select: Optional[Callable[[ChoiceOption], None]] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "next": self.next, "value": self.value}


@dataclass
class Choice:
    prompt: str = ""
    options: list[ChoiceOption] = field(default_factory=list)
    kind: ClassVar[str] = "choice"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "prompt": self.prompt, "options": [o.to_dict() for o in self.options]}


@dataclass
class ActionStep:
    """
    Non-blocking side effect.

    ``run`` wins when set; otherwise the runner looks ``name`` up in its
    action handlers and calls the handler with ``params``.
    """
    name: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    run: Optional[Callable[[], None]] = field(default=None, compare=False, repr=False)
    kind: ClassVar[str] = "action"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "name": self.name, "params": dict(self.params)}


@dataclass
class End:
    kind: ClassVar[str] = "end"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind}


Step = Union[Say, Pause, Choice, ActionStep, End]


def step_from_dict(data: dict[str, Any]) -> Step:
    """
    Rebuild a step from its dict form.

    Raises:
        ValueError: On an unknown step type
    """
    kind = data.get("type")
    if kind == "say":
        return Say(str(data.get("speaker", "")), str(data.get("text", "")))
    if kind == "pause":
        return Pause(data.get("ms", 400))
    if kind == "choice":
        options = [
            ChoiceOption(str(o.get("text", "")), o.get("next"), o.get("value"))
            for o in data.get("options", [])
        ]
        return Choice(str(data.get("prompt", "")), options)
    if kind == "action":
        return ActionStep(str(data.get("name", "")), dict(data.get("params") or {}))
    if kind == "end":
        return End()
    raise ValueError(f"Unknown dialogue step type: {kind!r}")


@dataclass
class DialogueScript:
    """An ordered, index-addressable list of steps."""
    steps: list[Step] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __getitem__(self, index: int) -> Step:
        return self.steps[index]

    def append(self, step: Step) -> int:
        """Append a step and return its index."""
        self.steps.append(step)
        return len(self.steps) - 1

    def extend(self, steps: list[Step]) -> None:
        self.steps.extend(steps)

    def clear(self) -> None:
        self.steps.clear()

    def lines(self) -> list[Say]:
        return [s for s in self.steps if isinstance(s, Say)]

    def to_dict(self) -> dict[str, Any]:
        return {"steps": [s.to_dict() for s in self.steps]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DialogueScript:
        return cls([step_from_dict(s) for s in data.get("steps", [])])
