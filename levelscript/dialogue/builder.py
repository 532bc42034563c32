"""
Property-table to dialogue-script compilation.

An interaction's lines live in numbered properties (``dialogue``,
``dialogue2`` ...). The builder turns a prefix into steps, resolves each
line's speaker, attaches per-line meta actions, and picks companion and
post-help variants of a prefix.

Speaker chain for a line key ``K`` of prefix ``P`` with index ``n``:
``Kspeaker`` -> ``P<n>speaker`` -> ``Pspeaker`` -> interaction ``speaker``.

Per-line meta properties (suffixes of the line key):
    sfx, sfxonce, sfxbase, sfxpersist / sfxpersistafterdialogue, sfxstoponexit
    giveitem, givecount, giveonce
    addhelp, addscore (each applied once per line)
"""

from __future__ import annotations

import re
from typing import Optional

from levelscript.config import EngineConfig
from levelscript.dialogue.script import ActionStep, DialogueScript, Pause, Say, Step
from levelscript.props import PropertyTable, clamp, numbered_keys, to_float
from levelscript.state.flags import FlagKey, FlagNamespace
from levelscript.state.game_state import GameState

FOLLOW_PREFIX = "followdialogue"
MAX_FOLLOW_LINES = 50

LINE_SFX = "line_sfx"
LINE_GIVE = "line_give"
LINE_HELP = "line_help"
LINE_SCORE = "line_score"

_TRAILING_DIGITS = re.compile(r"\d+$")


def parse_inline_speaker(line: str, default_speaker: str = "") -> tuple[str, str]:
    """Split ``"Name: text"``; a line without a leading name keeps the default speaker."""
    text = (line or "").strip()
    idx = text.find(":")
    if idx <= 0:
        return default_speaker, text
    return text[:idx].strip(), text[idx + 1:].strip()


class ScriptBuilder:
    """
    Compiles the dialogue properties of one interaction.

    Args:
        props: The interaction's property table
        interaction_id: Id used in once-guards of line effects
        scene: Scene the interaction belongs to
        state: Session state (companion presence, visit counters)
        config: Companion names and dialogue defaults
    """

    def __init__(
        self,
        props: PropertyTable,
        interaction_id: str,
        scene: str,
        state: GameState,
        config: Optional[EngineConfig] = None,
    ):
        self.props = props
        self.interaction_id = interaction_id
        self.scene = scene
        self.state = state
        self.config = config or EngineConfig()
        self.base_speaker = props.text("speaker")

    # --- Companion variants ---

    def companions_present(self) -> list[str]:
        return [name.lower() for name in self.config.companions if self.state.has_companion(name)]

    def _variant_prefixes(self, base: str) -> list[str]:
        present = self.companions_present()
        candidates: list[str] = []
        if present and len(present) == len(self.config.companions) and len(present) > 1:
            candidates.append(f"bothfollowers{base}")
        candidates.extend(f"{name}follower{base}" for name in present)
        return candidates

    def variant_prefix(self, base: str) -> str:
        """Companion-specific prefix with lines, else ``base``."""
        for prefix in self._variant_prefixes(base):
            if numbered_keys(self.props, prefix):
                return prefix
        return base

    def prompt_variant(self, base_key: str) -> str:
        for key in self._variant_prefixes(base_key):
            value = self.props.text(key)
            if value:
                return value
        return self.props.text(base_key)

    # --- Lines ---

    def keys(self, prefix: str) -> list[str]:
        return numbered_keys(self.props, prefix)

    def resolve_speaker(self, prefix: str, key: str) -> str:
        suffix = key[len(prefix):] if key.startswith(prefix) else ""
        n = int(suffix) if suffix.isdigit() else 1
        return self.props.first_text(
            f"{key}speaker",
            f"{prefix}{n}speaker",
            f"{prefix}speaker",
            default=self.base_speaker,
        )

    def line_actions(self, key: str) -> list[ActionStep]:
        """Meta actions that run just before the line ``key`` is shown."""
        props = self.props
        iid = self.interaction_id
        if not iid or not key:
            return []

        def once_key(kind: str, *extra: str) -> str:
            return FlagKey.of(FlagNamespace.LINE_EFFECT_ONCE, self.scene, iid, key, kind, *extra).encode()

        actions: list[ActionStep] = []
        sfx = props.text(f"{key}sfx")
        if sfx:
            persist = props.flag(f"{key}sfxpersist") or props.flag(f"{key}sfxpersistafterdialogue")
            stop_on_exit = props.flag(f"{key}sfxstoponexit", default=True)
            actions.append(ActionStep(LINE_SFX, {
                "key": sfx,
                "volume": clamp(props.number(f"{key}sfxbase", 100), 0, 100) / 100,
                "once_key": once_key("sfx") if props.flag(f"{key}sfxonce") else None,
                "track": not persist and stop_on_exit,
            }))

        item = props.text(f"{key}giveitem")
        if item:
            count = props.number(f"{key}givecount")
            actions.append(ActionStep(LINE_GIVE, {
                "item": item,
                "count": int(count) if count is not None and count > 0 else 1,
                "once_key": once_key("giveitem", item) if props.flag(f"{key}giveonce") else None,
            }))

        help_amount = int(to_float(props.get(f"{key}addhelp"), 0) or 0)
        if help_amount:
            actions.append(ActionStep(LINE_HELP, {"amount": help_amount, "once_key": once_key("addhelp")}))

        score_amount = int(to_float(props.get(f"{key}addscore"), 0) or 0)
        if score_amount:
            actions.append(ActionStep(LINE_SCORE, {"amount": score_amount, "once_key": once_key("addscore")}))
        return actions

    def line(self, prefix: str, key: str) -> list[Step]:
        """Meta actions plus the Say step for one key; empty text gives nothing."""
        text = self.props.text(key)
        if not text:
            return []
        steps: list[Step] = list(self.line_actions(key))
        steps.append(Say(self.resolve_speaker(prefix, key), text))
        return steps

    def from_prefix(self, prefix: str) -> list[Step]:
        """Every line of a prefix, in order."""
        prefix = prefix.strip().lower()
        if not prefix:
            return []
        steps: list[Step] = []
        for key in self.keys(prefix):
            steps.extend(self.line(prefix, key))
        return steps

    def sequence(self, keys: list[str], start: int = 1, end: Optional[int] = None) -> list[Step]:
        """Lines ``start``..``end`` (1-based, inclusive) of an already collected key list."""
        if not keys:
            return []
        start = max(1, start)
        end = len(keys) if end is None else max(start, min(len(keys), end))
        steps: list[Step] = []
        for key in keys[start - 1:end]:
            steps.extend(self.line(_TRAILING_DIGITS.sub("", key), key))
        return steps

    # --- Post-help ---

    def post_help_key(self) -> str:
        """Helped-marker name guarding the post-help path."""
        return self.props.first_text("posthelpedname", "markhelped", "speaker")

    def post_help_prefix(self, last_choice: Optional[int]) -> str:
        base = "postdialogue"
        if last_choice and last_choice > 0:
            candidate = f"choice{last_choice}postdialogue"
            if self.keys(candidate):
                base = candidate
        return self.variant_prefix(base)

    def post_help_prompt(self, last_choice: Optional[int]) -> str:
        base = "postprompt"
        if last_choice and last_choice > 0:
            candidate = f"choice{last_choice}postprompt"
            if self.props.text(candidate):
                base = candidate
        return self.prompt_variant(base)

    def post_help_steps(self, last_choice: Optional[int]) -> list[Step]:
        """
        Lines for a visit to an already-helped interaction.

        Progressive by default: visit K shows line K, later visits keep
        showing the last line. ``sequenceDialogue`` plays them all.
        """
        prefix = self.post_help_prefix(last_choice)
        steps = self.from_prefix(prefix)
        if self.props.flag("sequencedialogue") or not steps:
            return steps

        lines = _split_lines(steps)
        counter = FlagKey.of(FlagNamespace.POST_DIALOGUE_COUNT, self.scene, self.interaction_id, prefix)
        visit = self.state.increment_key(counter)
        return lines[min(visit, len(lines)) - 1]

    # --- Follower talk ---

    def has_follower_props(self) -> bool:
        variant_prefixes = [f"{name.lower()}follower{FOLLOW_PREFIX}" for name in self.config.companions]
        variant_prefixes.append(f"bothfollowers{FOLLOW_PREFIX}")
        for key in self.props:
            if key.startswith(FOLLOW_PREFIX) or key == "followpausems":
                return True
            if any(key.startswith(p) for p in variant_prefixes):
                return True
        return False

    def _follow_lines(self, base: str) -> list[str]:
        lines: list[str] = []
        first = self.props.text(base)
        if first:
            lines.append(first)
        for i in range(2, MAX_FOLLOW_LINES + 1):
            key = f"{base}{i}"
            if key not in self.props:
                break
            value = self.props.text(key)
            if value:
                lines.append(value)
        return lines

    def follower_base(self) -> str:
        """Follower-talk prefix for the companions present, or "" when none applies."""
        if not self.companions_present():
            return ""
        for prefix in self._variant_prefixes(FOLLOW_PREFIX):
            if self._follow_lines(prefix):
                return prefix
        return FOLLOW_PREFIX if self._follow_lines(FOLLOW_PREFIX) else ""

    def apply_follower_dialogue(self, script: DialogueScript | list[Step], replace: bool = True) -> bool:
        """
        Inject companion talk into ``script``.

        Replace mode (default) discards the script's lines first. Returns
        True if any follower line was added.
        """
        base = self.follower_base()
        if not base:
            return False
        lines = self._follow_lines(base)
        if not lines:
            return False

        pause_ms = int(clamp(self.props.number("followpausems", self.config.dialogue.follower_pause_ms), 0, 5000))
        steps: list[Step] = []
        if pause_ms > 0:
            steps.append(Pause(pause_ms))
        for raw in lines:
            speaker, text = parse_inline_speaker(raw, self.base_speaker)
            if text:
                steps.append(Say(speaker, text))

        if replace:
            script.clear()
        script.extend(steps)
        return True


def _split_lines(steps: list[Step]) -> list[list[Step]]:
    """Group steps so each group ends with one Say (its meta actions first)."""
    groups: list[list[Step]] = []
    current: list[Step] = []
    for step in steps:
        current.append(step)
        if isinstance(step, Say):
            groups.append(current)
            current = []
    return groups
