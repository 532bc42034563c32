"""
Typed effect descriptors.

Effect properties are read once per (object, event) and compiled into
an EffectBundle of validated pydantic models; the applier only ever
sees these models, never raw property strings.

Two property vocabularies compile into the same bundle shape:
- interaction level (``prefix=""``): giveItem, hideLayers, setMusic, once ...
- choice level (``prefix="choice2"``): choice2HelpScore, choice2AddFollower ...
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from levelscript.props import PropertyTable, clamp, to_float

TARGET_SEPARATORS = (":", "|", "/")


class _Descriptor(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')


class InteractionTarget(_Descriptor):
    """An interaction addressed across levels."""
    scene: str
    interaction_id: str

    @classmethod
    def parse(cls, raw: str, default_scene: str) -> Optional[InteractionTarget]:
        """``"Scene:id"`` (``|`` and ``/`` also accepted) or a bare id in ``default_scene``."""
        text = (raw or "").strip()
        if not text:
            return None
        for sep in TARGET_SEPARATORS:
            idx = text.find(sep)
            if idx > 0:
                scene, interaction_id = text[:idx].strip(), text[idx + 1:].strip()
                if scene and interaction_id:
                    return cls(scene=scene, interaction_id=interaction_id)
        return cls(scene=default_scene, interaction_id=text)


class MusicEffect(_Descriptor):
    key: str
    once: bool = False
    persist: bool = False
    fade_ms: int = Field(default=600, ge=0, le=5000)
    volume: float = Field(default=0.6, ge=0, le=1)
    loop: bool = True


class SfxEffect(_Descriptor):
    key: str
    once: bool = False
    uses: int = Field(default=0, ge=0, le=999)
    base: Optional[float] = None
    step: Optional[float] = None
    max_pct: Optional[float] = None

    def allowed(self, use_index: int) -> bool:
        """Play on this use? ``once`` limits to the first, ``uses`` to the first N."""
        if self.once and use_index != 1:
            return False
        return not (self.uses > 0 and use_index > self.uses)


class NpcEffect(_Descriptor):
    """Flip a target NPC and/or walk the interaction's NPC."""
    target: str = ""
    flip: bool = False
    mover: str = ""
    waypoints: list[str] = Field(default_factory=list)
    point_layer: str = "Points"
    speed: float = 40


class EffectBundle(_Descriptor):
    """Every effect an (object, event) pair carries. Empty fields mean "no effect"."""
    prefix: str = ""

    music: Optional[MusicEffect] = None
    clear_music_override: bool = False
    tile_layer: str = ""

    show_layers: list[str] = Field(default_factory=list)
    hide_layers: list[str] = Field(default_factory=list)
    remove_colliders: list[str] = Field(default_factory=list)

    give_items: list[str] = Field(default_factory=list)
    give_once_items: list[str] = Field(default_factory=list)
    take_items: list[str] = Field(default_factory=list)
    take_once_items: list[str] = Field(default_factory=list)

    help: Optional[int] = None
    help_once: Optional[int] = None
    score: Optional[int] = None
    score_once: Optional[int] = None

    mark_helped: str = ""
    set_flags: list[str] = Field(default_factory=list)
    clear_flags: list[str] = Field(default_factory=list)

    disable_targets: list[InteractionTarget] = Field(default_factory=list)
    enable_targets: list[InteractionTarget] = Field(default_factory=list)
    disable_ids: list[str] = Field(default_factory=list)
    enable_ids: list[str] = Field(default_factory=list)
    disable_self: bool = False
    remove_interactions: list[str] = Field(default_factory=list)
    once: bool = False

    sfx: Optional[SfxEffect] = None
    shake_ms: Optional[float] = None
    npc: Optional[NpcEffect] = None
    add_companion: str = ""
    companion_npc: str = ""
    remove_companion: str = ""
    prompt: str = ""

    @property
    def is_choice(self) -> bool:
        return bool(self.prefix)


def _int_or_none(props: PropertyTable, key: str) -> Optional[int]:
    if props.get(key) is None:
        return None
    number = to_float(props.get(key), 0.0)
    return int(number or 0)


def _csv(props: PropertyTable, *keys: str) -> list[str]:
    """CSV of the first key that is present (``hidelayer`` before ``hidelayers``)."""
    for key in keys:
        if props.get(key) is not None:
            return props.csv(key)
    return []


def _targets(props: PropertyTable, scene: str, *keys: str) -> list[InteractionTarget]:
    targets = (InteractionTarget.parse(raw, scene) for raw in _csv(props, *keys))
    return [t for t in targets if t is not None]


def compile_effects(props: PropertyTable, scene: str, prefix: str = "") -> EffectBundle:
    """
    Compile the effect properties of one object for one event.

    Args:
        props: The object's property table
        scene: Scene used for bare cross-level targets
        prefix: "" for interaction completion, "choiceN" for choice N
    """
    if prefix:
        return _compile_choice(props, prefix)
    return _compile_interaction(props, scene)


def _compile_interaction(props: PropertyTable, scene: str) -> EffectBundle:
    music = None
    once_key = props.text("setmusiconce")
    key = once_key or props.text("setmusic")
    if key:
        loop_raw = props.get("setmusicloop")
        music = MusicEffect(
            key=key,
            once=bool(once_key),
            persist=props.flag("setmusicpersist"),
            fade_ms=int(clamp(props.number("setmusicfadems", 600), 0, 5000)),
            volume=clamp(props.number("setmusicvolume", 0.6), 0.0, 1.0),
            loop=True if loop_raw is None else props.flag("setmusicloop"),
        )

    return EffectBundle(
        music=music,
        clear_music_override=props.flag("clearmusicpersist"),
        tile_layer=props.text("tileremovelayer"),
        hide_layers=_csv(props, "hidelayer", "hidelayers"),
        show_layers=_csv(props, "showlayer", "showlayers"),
        give_items=props.csv("giveitem"),
        give_once_items=props.csv("giveitemonce"),
        take_once_items=props.csv("takeitemonce"),
        take_items=props.csv("takeitem"),
        remove_colliders=_csv(props, "removecollider", "removecolliders"),
        help=_int_or_none(props, "helpscore"),
        help_once=_int_or_none(props, "helpscoreonce"),
        score=_int_or_none(props, "addscore"),
        score_once=_int_or_none(props, "addscoreonce"),
        mark_helped=props.text("markhelped"),
        set_flags=_csv(props, "setflags", "setflag"),
        clear_flags=_csv(props, "clearflags", "clearflag"),
        disable_targets=_targets(props, scene, "disableinteractions", "disableinteraction"),
        enable_targets=_targets(props, scene, "enableinteractions", "enableinteraction"),
        disable_self=props.flag("disableself"),
        remove_interactions=props.csv("removeinteraction"),
        once=props.flag("once"),
    )


def _compile_choice(props: PropertyTable, prefix: str) -> EffectBundle:
    p = prefix

    sfx = None
    sfx_key = props.text(f"{p}sfx")
    if sfx_key:
        sfx = SfxEffect(
            key=sfx_key,
            once=props.flag(f"{p}sfxonce"),
            uses=int(clamp(props.number(f"{p}sfxuses", 0), 0, 999)),
            base=props.number(f"{p}sfxbase"),
            step=props.number(f"{p}sfxstep"),
            max_pct=props.number(f"{p}sfxmax"),
        )

    target = props.first_text(f"{p}targetnpc", f"{p}targetnpcid", f"{p}target")
    flip_raw = props.get(f"{p}flipnpcy")
    if flip_raw is not None and str(flip_raw).strip() != "":
        flip = props.flag(f"{p}flipnpcy")
    else:
        rot = props.number(f"{p}rotatenpcdeg")
        flip = rot is not None and abs(rot) % 360 == 180

    waypoints = _csv(props, f"{p}waypoints", f"{p}movewaypoints")
    if not waypoints:
        single = props.first_text(f"{p}movetopoint", f"{p}movetarget")
        waypoints = [single] if single else []

    npc = None
    mover = props.first_text("npcid", "id")
    if target or (mover and waypoints):
        npc = NpcEffect(
            target=target,
            flip=flip,
            mover=mover if waypoints else "",
            waypoints=waypoints,
            point_layer=props.text(f"{p}waypointlayer", "Points"),
            speed=props.number(f"{p}movespeed", 40) or 40,
        )

    shake = props.get(f"{p}shake")
    return EffectBundle(
        prefix=p,
        mark_helped=props.text(f"{p}markhelped"),
        sfx=sfx,
        shake_ms=to_float(shake, 0.0) if shake is not None else None,
        add_companion=props.text(f"{p}addfollower"),
        companion_npc=props.text("npcid") or props.text(f"{p}addfollower"),
        remove_companion=props.text(f"{p}removefollower"),
        help_once=_int_or_none(props, f"{p}helpscore"),
        npc=npc,
        show_layers=_csv(props, f"{p}showlayer", f"{p}showlayers"),
        hide_layers=_csv(props, f"{p}hidelayer", f"{p}hidelayers"),
        remove_colliders=_csv(props, f"{p}removecollider", f"{p}removecolliders"),
        prompt=props.text(f"{p}postprompt") or props.text("postprompt"),
        enable_ids=_csv(props, f"{p}enableinteractions", f"{p}enableinteraction"),
        disable_ids=_csv(props, f"{p}disableinteractions", f"{p}disableinteraction"),
    )

