"""
Level session - one visit to one level.

Wires the scripting components together around a LevelContext and
drives them from a single per-frame update, in a fixed order:

    dialogue open:  dialogue -> ambience -> NPC mover -> delayed bodies -> audio fades
    otherwise:      real time -> zones -> ambience -> selection + interact
                    -> delayed bodies -> NPC mover -> audio fades

Everything an effect changes during a frame is therefore visible to
the gating checks of the next frame.

Usage:
    session = LevelSession("Library", level, state, audio_manager, config,
                           input_handler=input, event_bus=bus)
    session.enter()
    while running:
        input.update()
        session.actor.set_position(*player_pos)
        session.update(dt_ms)
    session.exit()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional

from engine.core.actions import Action
from engine.core.events import LevelEvent
from levelscript.audio.controller import SceneAudio
from levelscript.config import EngineConfig
from levelscript.context import Actor, Camera, CameraShake, FrameClock, LevelContext
from levelscript.dialogue.runner import DialogueRunner
from levelscript.endings import is_world_ending
from levelscript.interaction.registry import Interactable, InteractionRegistry
from levelscript.interaction.runner import InteractionRunner
from levelscript.npc.mover import NpcRegistry, NpcWaypointMover, SpawnedNpc
from levelscript.state.flags import FlagKey, FlagNamespace
from levelscript.zones.triggers import TriggerZoneEvaluator

if TYPE_CHECKING:
    from engine.audio.manager import AudioManager
    from engine.core.events import EventBus
    from engine.input.handler import InputHandler
    from levelscript.level.map import LevelMap
    from levelscript.state.game_state import GameState

logger = logging.getLogger(__name__)


class LevelSession:
    """
    Orchestrates one level visit.

    Args:
        scene: Scene key (persistence keys are scoped by it)
        level: The loaded level
        state: Shared session state
        audio_manager: Engine audio manager
        config: Engine configuration
        input_handler: Polled for interact and dialogue input (optional)
        camera: Receives shake requests (optional)
        event_bus: Receives lifecycle events (optional)
        actor: The player body (a fresh Actor by default)
        clock: Frame clock (a fresh one by default)
    """

    def __init__(
        self,
        scene: str,
        level: LevelMap,
        state: GameState,
        audio_manager: AudioManager,
        config: Optional[EngineConfig] = None,
        input_handler: Optional[InputHandler] = None,
        camera: Optional[Camera] = None,
        event_bus: Optional[EventBus] = None,
        actor: Optional[Actor] = None,
        clock: Optional[FrameClock] = None,
    ):
        self.scene = scene
        self.level = level
        self.state = state
        self.config = config or EngineConfig()
        self.input = input_handler
        self.event_bus = event_bus

        self.clock = clock or FrameClock()
        self.actor = actor or Actor()
        self.audio = SceneAudio(audio_manager, state, scene, self.config, event_bus)
        self.npcs = NpcRegistry(state, scene)
        self.mover = NpcWaypointMover(self.npcs, level, self.config, event_bus)

        self.ctx = LevelContext(
            scene=scene,
            state=state,
            config=self.config,
            level=level,
            clock=self.clock,
            actor=self.actor,
            audio=self.audio,
            npcs=self.npcs,
            mover=self.mover,
            shake=CameraShake(camera, self.clock),
            bus=event_bus,
        )
        self.registry = InteractionRegistry(self.ctx)
        self.dialogue = DialogueRunner(state, self.clock, input_handler, self.config.dialogue, event_bus)
        self.interactions = InteractionRunner(self.ctx, self.registry, self.dialogue)
        self.zones = TriggerZoneEvaluator(self.ctx, self.registry, self.interactions)

        self.selected: Optional[Interactable] = None
        self.active = False
        self._settled_pos: Optional[tuple[float, float]] = None

    # --- Lifecycle ---

    def enter(self, npcs: Optional[Iterable[SpawnedNpc]] = None) -> None:
        """
        Start the visit and re-apply everything persisted about the level.

        Args:
            npcs: Spawned NPC handles; built from the NPC object layer when None
        """
        self.state.track_scene(self.scene)
        self._apply_layer_visibility()

        self.registry.build()
        self.registry.reapply_persisted_tile_removals()
        self._reapply_collider_removals()

        for npc in (self._spawn_npcs() if npcs is None else npcs):
            self.npcs.register(npc)

        self.audio.apply_scene_music_on_enter()
        self._settled_pos = self.actor.position
        self.active = True
        self.ctx.publish(LevelEvent.ENTERED, interactables=len(self.registry), npcs=len(self.npcs))
        logger.info("Entered level %s (%d interactables, %d NPCs)", self.scene, len(self.registry), len(self.npcs))

    def exit(self) -> None:
        """End the visit: persist NPCs, silence the level and settle scene progress."""
        if not self.active:
            return
        self.active = False
        self.interactions.cancel_pending()
        self.dialogue.cancel()
        self.npcs.persist_all(skip=self.mover.moving_ids)
        self.audio.stop_all()
        self.zones.reset()
        self.state.on_leave_scene(self.scene)
        self.ctx.publish(LevelEvent.EXITED)
        logger.info("Left level %s", self.scene)

    # --- Frame ---

    def update(self, dt_ms: float) -> bool:
        """
        Advance one frame.

        Returns:
            False while a dialogue holds the frame (the world is paused)
        """
        if not self.active:
            return False
        self.clock.advance(dt_ms)

        if self.dialogue.is_active:
            self.selected = None
            self.dialogue.update(dt_ms)
            self.zones.update_ambience()
            self.mover.update(dt_ms)
            self.interactions.update(dt_ms)
            self.audio.update(dt_ms)
            return False

        self.state.tick_real_time(dt_ms)
        self.ctx.prev_actor_pos = self._settled_pos

        self.zones.update()
        self.zones.update_ambience()
        self._update_selection()

        self.interactions.update(dt_ms)
        self.mover.update(dt_ms)
        self.audio.update(dt_ms)
        self._settled_pos = self.actor.position
        return True

    def interact(self) -> bool:
        """Use the selected interactable. Returns True if one was run."""
        if self.selected is None or self.dialogue.is_active:
            return False
        if not self.state.can_world_interact(self.clock.now_ms):
            return False
        self.selected.action()
        return True

    @property
    def world_ended(self) -> bool:
        return is_world_ending(self.state, self.config.endings)

    # --- Internals ---

    def _update_selection(self) -> None:
        if self.dialogue.is_active:
            self.selected = None
            return
        self.selected = self.registry.find_nearest(self.actor.position, self.actor.facing())
        if self.input is not None and self.input.is_action_just_pressed(Action.INTERACT):
            self.interact()

    def _apply_layer_visibility(self) -> None:
        """``startHidden`` applies on the very first visit only; afterwards the persisted record wins."""
        overrides = self.state.layer_overrides(self.scene)
        layers = [*self.level.tile_layers.values(), *self.level.object_layers.values()]
        for layer in layers:
            init_key = FlagKey.of(FlagNamespace.LAYER_INIT, self.scene, layer.name)
            if not self.state.has_key(init_key) and layer.properties.flag("starthidden"):
                layer.set_visible(False)
                self.state.set_layer_hidden(self.scene, layer.name, True)
            elif layer.name in overrides:
                layer.set_visible(not overrides[layer.name])
            self.state.set_key(init_key, True)

    def _reapply_collider_removals(self) -> None:
        for collider_id in list(self.level.colliders):
            if self.state.has_key(FlagKey.of(FlagNamespace.COLLIDER_REMOVED, self.scene, collider_id)):
                self.level.remove_collider(collider_id)

    def _spawn_npcs(self) -> list[SpawnedNpc]:
        spawned = []
        for obj in self.level.get_objects(self.config.layers.npcs):
            npc_id = obj.script_id
            if not npc_id:
                logger.warning("NPC object without id in %s (layer '%s')", self.scene, self.config.layers.npcs)
                continue
            x, y = obj.center
            spawned.append(SpawnedNpc(npc_id, x, y))
        return spawned
