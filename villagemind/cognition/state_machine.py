"""Authoritative per-agent behaviour states.

Runs every tick whether or not a decision is pending, and turns the agent's
state into a ``MoveIntent`` for the external movement integrator. All side
effects on the world go through the agent's capabilities (``Mover``,
``Combatant``, ``Conversationalist``, ``Gatherer``) or through
``WorldSnapshotProvider.deplete_object``.

Transition summary:

- idle: stand still
- roaming / movingToTarget / movingToResource: walk to the destination,
  arrive within the per-state stop distance; an invalid referent resets to idle
- gathering: wait out the gather duration, then add the item and idle
- attacking: keep facing the target, re-request attacks as each finishes
- chatting: passive until ``end_conversation`` or a new decision
- dead: absorbing
"""

from __future__ import annotations

from typing import Callable, Optional

from villagemind.agent import Agent
from villagemind.config import EngineSettings
from villagemind.movement import planar_distance
from villagemind.schemas import (
    CHARACTER_ACTIONS,
    Action,
    ActionKind,
    AgentState,
    CharacterRecord,
    Cue,
    EventKind,
    MoveIntent,
    ObjectRecord,
    Vec3,
)
from villagemind.world import WorldSnapshotProvider

from .fallback import FallbackPolicy


# (agent, kind, message, target_id, tick) -> None
EventSink = Callable[[Agent, EventKind, str, Optional[str], int], None]
# (speaker, listener_id, message, tick) -> None
ChatSink = Callable[[Agent, str, str, int], None]

DEFAULT_CHAT_MESSAGE = "..."


def _history_sink(agent: Agent, kind: EventKind, message: str, target_id: Optional[str], tick: int) -> None:
    agent.history.record(kind, message, tick=tick, actor_id=agent.agent_id, target_id=target_id)


class ActionStateMachine:
    """Drives agents through their behaviour states."""

    def __init__(
        self,
        world: WorldSnapshotProvider,
        *,
        settings: Optional[EngineSettings] = None,
        fallback: Optional[FallbackPolicy] = None,
        on_event: Optional[EventSink] = None,
        on_chat: Optional[ChatSink] = None,
    ) -> None:
        self.world = world
        self.settings = settings or EngineSettings()
        self.fallback = fallback or FallbackPolicy(world)
        self.on_event = on_event or _history_sink
        self.on_chat = on_chat

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def apply(self, agent: Agent, action: Action) -> bool:
        """Commit a validated action: clear old fields, set new ones, set state."""

        if agent.is_dead:
            return False

        agent.clear_targets()
        agent.intent = action.rationale or action.kind.value
        agent.previous_state = agent.state

        if action.kind == ActionKind.IDLE:
            agent.state = AgentState.IDLE
        elif action.kind == ActionKind.ROAM:
            agent.destination = self.fallback.pick_destination(agent)
            agent.state = AgentState.ROAMING
        elif action.kind == ActionKind.GATHER:
            agent.resource_id = action.object_id
            agent.target_action = ActionKind.GATHER
            agent.state = AgentState.MOVING_TO_RESOURCE
        elif action.kind in CHARACTER_ACTIONS:
            agent.target_id = action.target_id
            agent.target_action = action.kind
            agent.message = action.message
            agent.state = AgentState.MOVING_TO_TARGET
        return True

    def reset(self, agent: Agent) -> None:
        """Return to idle with no target, action or message. Idempotent."""

        if agent.is_dead:
            return
        agent.clear_targets()
        if agent.state != AgentState.IDLE:
            agent.previous_state = agent.state
        agent.state = AgentState.IDLE

    def end_conversation(self, agent: Agent) -> bool:
        if agent.state != AgentState.CHATTING:
            return False
        self.reset(agent)
        return True

    def mark_dead(self, agent: Agent, tick: int = 0) -> None:
        if agent.is_dead:
            return
        agent.clear_targets()
        agent.previous_state = agent.state
        agent.state = AgentState.DEAD
        agent.intent = "Dead"
        agent.invalidate_requests()
        self.on_event(agent, EventKind.DIED, f"{agent.display_name} died", None, tick)

    # ------------------------------------------------------------------
    # Per-tick behaviour
    # ------------------------------------------------------------------

    def step(self, agent: Agent, dt: float, tick: int = 0) -> MoveIntent:
        """Advance ``agent`` by ``dt`` seconds and return its movement intent."""

        state = agent.state
        if state == AgentState.DEAD or state == AgentState.IDLE:
            return MoveIntent()
        if state == AgentState.ROAMING:
            return self._step_roaming(agent)
        if state == AgentState.MOVING_TO_TARGET:
            return self._step_to_target(agent, tick)
        if state == AgentState.MOVING_TO_RESOURCE:
            return self._step_to_resource(agent)
        if state == AgentState.GATHERING:
            return self._step_gathering(agent, dt, tick)
        if state == AgentState.ATTACKING:
            return self._step_attacking(agent, tick)
        if state == AgentState.CHATTING:
            return self._step_chatting(agent)
        self.reset(agent)
        return MoveIntent()

    def _step_roaming(self, agent: Agent) -> MoveIntent:
        if agent.destination is None:
            self.reset(agent)
            return MoveIntent()
        intent = self._travel(agent, agent.destination, self.settings.roam_stop_distance)
        if intent is not None:
            return intent
        self.reset(agent)
        return MoveIntent()

    def _step_to_target(self, agent: Agent, tick: int) -> MoveIntent:
        target = self._live_character(agent.target_id)
        if target is None:
            self.reset(agent)
            return MoveIntent()
        intent = self._travel(agent, target.position, self.settings.target_stop_distance)
        if intent is not None:
            return intent
        return self._arrive_at_target(agent, target, tick)

    def _step_to_resource(self, agent: Agent) -> MoveIntent:
        resource = self._live_object(agent.resource_id)
        if resource is None:
            self.reset(agent)
            return MoveIntent()
        intent = self._travel(agent, resource.position, self.settings.target_stop_distance)
        if intent is not None:
            return intent

        mover = agent.capabilities.mover
        mover.face(resource.position)
        mover.play_cue(Cue.GATHER)
        agent.previous_state = agent.state
        agent.state = AgentState.GATHERING
        agent.gather_timer = 0.0
        agent.gather_duration = resource.gather_time or self.settings.default_gather_seconds
        return MoveIntent(facing=resource.position, cue=Cue.GATHER)

    def _step_gathering(self, agent: Agent, dt: float, tick: int) -> MoveIntent:
        agent.gather_timer += dt
        if agent.gather_timer < agent.gather_duration:
            return MoveIntent()

        resource = self._live_object(agent.resource_id)
        gatherer = agent.capabilities.gatherer
        if resource is None or gatherer is None:
            self.on_event(agent, EventKind.GATHER_FAIL, "The resource is gone", None, tick)
        else:
            item = resource.resource or resource.type
            if gatherer.add_item(item):
                if resource.is_depletable:
                    self.world.deplete_object(resource.id)
                self.on_event(agent, EventKind.GATHER_COMPLETE, f"Gathered {item}", None, tick)
            else:
                self.on_event(agent, EventKind.GATHER_FAIL, "Inventory full", None, tick)

        self.reset(agent)
        return MoveIntent()

    def _step_attacking(self, agent: Agent, tick: int) -> MoveIntent:
        target = self._live_character(agent.target_id)
        combatant = agent.capabilities.combatant
        if target is None or combatant is None:
            self.reset(agent)
            return MoveIntent()

        mover = agent.capabilities.mover
        if planar_distance(mover.position(), target.position) > self.settings.interaction_distance:
            # Target stepped away: chase it, the attack resumes on arrival.
            agent.previous_state = agent.state
            agent.state = AgentState.MOVING_TO_TARGET
            return self._step_to_target(agent, tick)

        mover.face(target.position)
        if combatant.attack_in_progress():
            return MoveIntent(facing=target.position)
        self._attack(agent, target, tick)
        return MoveIntent(facing=target.position, cue=Cue.ATTACK)

    def _step_chatting(self, agent: Agent) -> MoveIntent:
        target = self._live_character(agent.target_id)
        if target is None:
            return MoveIntent()
        agent.capabilities.mover.face(target.position)
        return MoveIntent(facing=target.position)

    # ------------------------------------------------------------------
    # Arrival and helpers
    # ------------------------------------------------------------------

    def _arrive_at_target(self, agent: Agent, target: CharacterRecord, tick: int) -> MoveIntent:
        capabilities = agent.capabilities
        capabilities.mover.face(target.position)
        planned = agent.target_action

        if planned == ActionKind.CHAT and capabilities.conversationalist is not None:
            message = agent.message or DEFAULT_CHAT_MESSAGE
            capabilities.conversationalist.say(message, target.id)
            capabilities.mover.play_cue(Cue.CHAT_BEGIN)
            agent.previous_state = agent.state
            agent.state = AgentState.CHATTING
            self.on_event(agent, EventKind.CHAT, f"{agent.display_name}: {message}", target.id, tick)
            if self.on_chat is not None:
                self.on_chat(agent, target.id, message, tick)
            return MoveIntent(facing=target.position, cue=Cue.CHAT_BEGIN)

        if planned == ActionKind.ATTACK and capabilities.combatant is not None:
            agent.previous_state = agent.state
            agent.state = AgentState.ATTACKING
            self._attack(agent, target, tick)
            return MoveIntent(facing=target.position, cue=Cue.ATTACK)

        if planned == ActionKind.HEAL and capabilities.combatant is not None:
            healed = capabilities.combatant.heal(target.id)
            label = target.name or target.id
            message = f"Healed {label}" if healed else f"Could not heal {label}"
            self.on_event(agent, EventKind.HEAL, message, target.id, tick)

        # moveTo, heal and any unsupported plan end at the target.
        self.reset(agent)
        return MoveIntent(facing=target.position)

    def _attack(self, agent: Agent, target: CharacterRecord, tick: int) -> None:
        combatant = agent.capabilities.combatant
        if combatant is None:
            return
        combatant.request_attack(target.id)
        agent.capabilities.mover.play_cue(Cue.ATTACK)
        label = target.name or target.id
        self.on_event(agent, EventKind.ATTACK, f"{agent.display_name} attacked {label}", target.id, tick)

    def _travel(self, agent: Agent, destination: Vec3, stop_distance: float) -> Optional[MoveIntent]:
        """Movement toward ``destination``, or ``None`` once within ``stop_distance``."""

        mover = agent.capabilities.mover
        if planar_distance(mover.position(), destination) <= stop_distance:
            return None
        mover.face(destination)
        return MoveIntent(forward=1.0, facing=destination)

    def _live_character(self, character_id: Optional[str]) -> Optional[CharacterRecord]:
        if character_id is None:
            return None
        record = self.world.get_character(character_id)
        if record is None or record.removed or record.is_dead:
            return None
        return record

    def _live_object(self, object_id: Optional[str]) -> Optional[ObjectRecord]:
        if object_id is None:
            return None
        record = self.world.get_object(object_id)
        if record is None or record.removed or not record.visible or not record.is_interactable:
            return None
        return record


__all__ = ["ActionStateMachine", "ChatSink", "DEFAULT_CHAT_MESSAGE", "EventSink"]
