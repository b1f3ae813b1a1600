"""
Decision engine driver.

Fully decoupled from rendering and physics: the world, the oracle client and
every agent's capabilities are injected.

Per frame, per agent, in this order:
1. Observe (current/previous snapshot rotation)
2. Detect significant change
3. Step the state machine (movement intent for the integrator)
4. Consume a finished consultation, if any: relevance check, parse,
   validate against this frame's observation, then apply or fall back
5. Let the scheduler start a new consultation

``tick`` is synchronous and never waits on the oracle. Consultations run as
asyncio tasks on the running loop and only ever touch agent state through
step 4 of a later frame.

A chat line said to another registered agent starts a reply consultation for
that listener. It follows the same in-flight and relevance rules; the reply is
spoken and logged, and both sides re-decide after ``chat_followup_seconds``.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .agent import Agent
from .cognition.cadence import DecisionCadence, DecisionScheduler, Trigger
from .cognition.context import build_chat_reply_context, build_decision_context
from .cognition.fallback import FallbackPolicy
from .cognition.prompts import DEFAULT_PROMPTS, PromptLibrary
from .cognition.renderers import RenderedPrompt, render_prompt
from .cognition.state_machine import ActionStateMachine
from .cognition.validator import parse_chat_reply, parse_response, validate_response
from .config import EngineSettings
from .errors import (
    ConsultationSetupError,
    DecisionEngineError,
    ObservationUnavailable,
    OracleError,
    OracleTransportError,
)
from .event_log import EventLog
from .logging_utils import (
    Color,
    colored,
    env_flag,
    log_deterministic,
    log_error,
    log_info,
    log_oracle,
    log_success,
)
from .oracle import OracleClient
from .perception import Observer, significant_change
from .schemas import AgentState, EventEntry, EventKind, MoveIntent, Observation
from .world import WorldSnapshotProvider


TickListener = Callable[[int, Dict[str, MoveIntent]], None]

CHAT_REPLY_FAILURE_LINE = "I... don't know what to say."


# =============================
# Module-level Exceptions
# =============================

class UnknownAgentError(KeyError):
    """Raised when an engine command names an agent that is not registered."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' is not registered with this engine")


class NoOracleConfigured(OracleError):
    """No oracle client was injected; every consultation falls back."""

    reason = "no oracle configured"


@dataclass(frozen=True)
class ConsultationOutcome:
    """Result of one consultation, carried as a value into the owning tick."""

    agent_id: str
    request_id: int
    raw: Optional[str] = None
    error: Optional[DecisionEngineError] = None


@dataclass
class _Consultation:
    request_id: int
    trigger: Optional[Trigger]
    task: "asyncio.Task[ConsultationOutcome]"
    # Set for chat replies: the agent being answered.
    reply_to: Optional[str] = None


class DecisionEngine:
    """Owns the agents and runs their per-frame decision pipeline."""

    def __init__(
        self,
        world: WorldSnapshotProvider,
        *,
        oracle: Optional[OracleClient] = None,
        settings: Optional[EngineSettings] = None,
        prompt_library: Optional[PromptLibrary] = None,
        template_name: str = "decide",
        chat_template_name: str = "chat_reply",
        rng: Optional[random.Random] = None,
        event_log: Optional[EventLog] = None,
        tick_listeners: Optional[List[TickListener]] = None,
    ) -> None:
        """Initialize the engine with its collaborators.

        Args:
            world: Snapshot provider queried every frame
            oracle: Oracle client; without one every consultation falls back
            settings: Behaviour tunables (defaults mirror the village game)
            prompt_library: Optional library overriding ``DEFAULT_PROMPTS``
            template_name: Template used to render consultation prompts
            chat_template_name: Template used when an agent answers a chat line
            rng: Random source for cooldown jitter and fallback destinations
            event_log: Shared diagnostics log (created when omitted)
            tick_listeners: Callables invoked after each frame with
                (frame, intents); failures are logged, never raised
        """
        self.world = world
        self.oracle = oracle
        self.settings = settings or EngineSettings()
        self.prompt_library = prompt_library
        self.template_name = template_name
        self.chat_template_name = chat_template_name
        self.rng = rng or random.Random()
        self.events = event_log or EventLog(self.settings.event_log_size)
        self.tick_listeners = tick_listeners or []

        self.observer = Observer(world)
        self.scheduler = DecisionScheduler(DecisionCadence.from_settings(self.settings), rng=self.rng)
        self.fallback = FallbackPolicy(world, rng=self.rng)
        self.state_machine = ActionStateMachine(
            world,
            settings=self.settings,
            fallback=self.fallback,
            on_event=self._record_agent_event,
            on_chat=self._request_chat_reply,
        )

        self.agents: Dict[str, Agent] = {}
        self.frame = 0
        self.elapsed = 0.0
        self._consultations: Dict[str, _Consultation] = {}
        self._detached: List["asyncio.Task[ConsultationOutcome]"] = []

    # ------------------------------------------------------------------
    # Agent lifecycle
    # ------------------------------------------------------------------

    def add_agent(self, agent: Agent) -> Agent:
        if agent.history.max_entries != self.settings.event_log_size:
            agent.history = EventLog(self.settings.event_log_size)
        self.agents[agent.agent_id] = agent
        log_deterministic(f"[{agent.display_name}] Registered with decision engine")
        return agent

    def get_agent(self, agent_id: str) -> Agent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise UnknownAgentError(agent_id)
        return agent

    def remove_agent(self, agent_id: str) -> Optional[Agent]:
        """Stop driving ``agent_id``; an outstanding answer is never applied."""

        agent = self.agents.pop(agent_id, None)
        if agent is None:
            return None
        agent.invalidate_requests()
        consultation = self._consultations.pop(agent_id, None)
        if consultation is not None and not consultation.task.done():
            self._detached.append(consultation.task)
        agent.in_flight = False
        return agent

    def reset_agent(self, agent_id: str) -> None:
        """Return an agent to idle and discard any outstanding consultation."""

        agent = self.get_agent(agent_id)
        if agent.is_dead:
            return
        self.state_machine.reset(agent)
        agent.invalidate_requests()

    def end_conversation(self, agent_id: str) -> bool:
        return self.state_machine.end_conversation(self.get_agent(agent_id))

    def report_event(
        self,
        agent_id: str,
        kind: EventKind,
        message: str,
        *,
        target_id: Optional[str] = None,
    ) -> None:
        """Log an outcome produced by an external system (e.g. exhaustion)."""

        self._record_agent_event(self.get_agent(agent_id), kind, message, target_id, self.frame)

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def tick(self, dt: float) -> Dict[str, MoveIntent]:
        """Advance every agent by ``dt`` seconds.

        Must be called from a thread with a running asyncio event loop when an
        oracle is configured. Never raises for per-agent failures.
        """

        self.frame += 1
        self.elapsed += dt
        intents: Dict[str, MoveIntent] = {}

        for agent in list(self.agents.values()):
            try:
                intents[agent.agent_id] = self._tick_agent(agent, dt)
            except Exception as exc:
                intents[agent.agent_id] = MoveIntent()
                message = f"[{agent.display_name}] Frame {self.frame} failed: {exc}"
                log_error(message)
                self.events.record(
                    EventKind.ENGINE_ERROR,
                    message,
                    tick=self.frame,
                    actor_id=agent.agent_id,
                    data={"error": type(exc).__name__},
                )

        for listener in self.tick_listeners:
            try:
                listener(self.frame, intents)
            except Exception as exc:  # pragma: no cover - diagnostic hook
                print(f"  [Analysis] Listener failed: {exc}")

        return intents

    def _tick_agent(self, agent: Agent, dt: float) -> MoveIntent:
        frame = self.frame

        if agent.is_dead:
            self._consume(agent, frame)
            return MoveIntent()

        try:
            observation = self.observer.update(agent, frame)
        except ObservationUnavailable as exc:
            observation = agent.observation
            log_error(f"[{agent.display_name}] {exc}")
            self.events.record(
                EventKind.OBSERVATION_UNAVAILABLE,
                str(exc),
                tick=frame,
                actor_id=agent.agent_id,
            )

        if observation is not None and not observation.self_summary.present:
            # Suspended: the world no longer knows this character.
            return MoveIntent()

        if observation is not None and observation.self_summary.is_dead:
            self.state_machine.mark_dead(agent, frame)
            self._consume(agent, frame)
            log_info(f"[{agent.display_name}] Died; no further decisions")
            return MoveIntent()

        changed = significant_change(
            agent.observation,
            agent.previous_observation,
            self.settings.health_change_threshold,
        )

        state_before = agent.state
        intent = self.state_machine.step(agent, dt, frame)
        just_finished = state_before != AgentState.IDLE and agent.state == AgentState.IDLE

        self._consume(agent, frame)

        decision = self.scheduler.evaluate(
            agent,
            dt=dt,
            now=self.elapsed,
            changed=changed,
            just_finished=just_finished,
        )
        if decision.start and decision.trigger is not None:
            self._start_consultation(agent, decision.trigger, frame)

        return intent

    # ------------------------------------------------------------------
    # Consultations
    # ------------------------------------------------------------------

    def _start_consultation(self, agent: Agent, trigger: Trigger, frame: int) -> None:
        observation = agent.observation
        if observation is None:
            self.scheduler.finish(agent)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.scheduler.finish(agent)
            self._fall_back(agent, OracleTransportError("no running event loop for consultation"), frame)
            return

        try:
            context = build_decision_context(agent, observation, settings=self.settings)
            prompt = render_prompt(self._template(self.template_name), context)
        except Exception as exc:
            # Nothing was registered, so nothing else would clear the flag.
            self.scheduler.finish(agent)
            self._fall_back(agent, ConsultationSetupError(f"could not build decision prompt: {exc}"), frame)
            return

        log_oracle(f"[{agent.display_name}] Consulting oracle ({trigger.value})")
        if env_flag("DEBUG_ORACLE"):
            print(colored(f"\n[DEBUG_ORACLE] {agent.display_name} context:\n{context.to_json()}", Color.CYAN))

        task = loop.create_task(self._consult(agent.agent_id, agent.request_id, prompt))
        self._consultations[agent.agent_id] = _Consultation(
            request_id=agent.request_id,
            trigger=trigger,
            task=task,
        )

    def _request_chat_reply(self, speaker: Agent, listener_id: str, message: str, frame: int) -> None:
        """Ask the oracle how ``listener_id`` answers ``speaker``'s chat line.

        Only registered, live agents that can speak reply. A listener with a
        consultation already in flight does not reply, keeping at most one
        request per agent.
        """

        listener = self.agents.get(listener_id)
        if not self.settings.chat_replies or listener is None or listener is speaker:
            return
        if listener.is_dead or listener.capabilities.conversationalist is None:
            return
        if listener.in_flight:
            log_deterministic(f"[{listener.display_name}] Busy deciding; no reply to {speaker.display_name}")
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            outcome = ConsultationOutcome(
                listener_id,
                listener.request_id,
                error=OracleTransportError("no running event loop for chat reply"),
            )
            self._finish_chat_reply(listener, speaker.agent_id, outcome, frame)
            return

        request_id = self.scheduler.begin(listener, self.elapsed)
        try:
            context = build_chat_reply_context(listener, speaker.display_name, message, settings=self.settings)
            prompt = render_prompt(self._template(self.chat_template_name), context)
        except Exception as exc:
            self.scheduler.finish(listener)
            outcome = ConsultationOutcome(
                listener_id,
                request_id,
                error=ConsultationSetupError(f"could not build chat reply prompt: {exc}"),
            )
            self._finish_chat_reply(listener, speaker.agent_id, outcome, frame)
            return

        log_oracle(f"[{listener.display_name}] Replying to {speaker.display_name}")
        task = loop.create_task(self._consult(listener_id, request_id, prompt))
        self._consultations[listener_id] = _Consultation(
            request_id=request_id,
            trigger=None,
            task=task,
            reply_to=speaker.agent_id,
        )

    async def _consult(self, agent_id: str, request_id: int, prompt: RenderedPrompt) -> ConsultationOutcome:
        if self.oracle is None:
            return ConsultationOutcome(agent_id, request_id, error=NoOracleConfigured())
        try:
            raw = await self.oracle.consult(prompt)
        except DecisionEngineError as exc:
            return ConsultationOutcome(agent_id, request_id, error=exc)
        except Exception as exc:
            return ConsultationOutcome(
                agent_id,
                request_id,
                error=OracleTransportError(f"unexpected oracle failure: {exc}"),
            )
        return ConsultationOutcome(agent_id, request_id, raw=raw)

    def _consume(self, agent: Agent, frame: int) -> None:
        consultation = self._consultations.get(agent.agent_id)
        if consultation is None or not consultation.task.done():
            return

        del self._consultations[agent.agent_id]
        self.scheduler.finish(agent)

        if consultation.task.cancelled():
            outcome = ConsultationOutcome(
                agent.agent_id,
                consultation.request_id,
                error=OracleTransportError("consultation cancelled"),
            )
        else:
            outcome = consultation.task.result()

        if agent.is_dead or outcome.request_id != agent.request_id:
            log_deterministic(f"[{agent.display_name}] Discarding stale oracle response")
            return

        if consultation.reply_to is not None:
            self._finish_chat_reply(agent, consultation.reply_to, outcome, frame)
            return

        if outcome.error is not None:
            self._fall_back(agent, outcome.error, frame)
            return

        parsed = parse_response(outcome.raw)
        if not parsed.ok or parsed.response is None:
            self._fall_back(agent, parsed.error, frame)
            return

        verdict = validate_response(parsed.response, agent.observation, agent.capabilities)
        if not verdict.accepted or verdict.action is None:
            self._fall_back(agent, verdict.rejection, frame)
            return

        action = verdict.action
        self.state_machine.apply(agent, action)
        reference = action.target_id or action.object_id
        summary = action.kind.value if reference is None else f"{action.kind.value} {reference}"
        self.events.record(
            EventKind.DECISION,
            f"{agent.display_name} decided: {summary}",
            tick=frame,
            actor_id=agent.agent_id,
            target_id=action.target_id,
            data={"action": action.kind.value, "parse": parsed.kind.value, "trigger": consultation.trigger.value},
        )
        log_success(f"[{agent.display_name}] Decided: {summary}")
        if env_flag("VILLAGEMIND_VERBOSE"):
            print(colored(f"    Intent: {agent.intent}", Color.CYAN))

    def _finish_chat_reply(self, listener: Agent, speaker_id: str, outcome: ConsultationOutcome, frame: int) -> None:
        """Say the reply (or an apology on failure), log it, and re-arm both sides."""

        speaker = self.agents.get(speaker_id)
        speaker_name = speaker.display_name if speaker is not None else speaker_id

        if outcome.error is not None:
            line = CHAT_REPLY_FAILURE_LINE
            self._record_agent_event(
                listener,
                EventKind.CHAT_ERROR,
                f"{listener.display_name} failed to respond to {speaker_name}: {outcome.error}",
                speaker_id,
                frame,
            )
            log_error(f"[{listener.display_name}] {outcome.error.label}: {outcome.error}; no reply")
        else:
            line = parse_chat_reply(outcome.raw)
            self._record_agent_event(
                listener,
                EventKind.CHAT,
                f'{listener.display_name} said "{line}" to {speaker_name}',
                speaker_id,
                frame,
            )
            log_success(f"[{listener.display_name}] Replied to {speaker_name}: {line}")

        conversationalist = listener.capabilities.conversationalist
        if conversationalist is not None:
            conversationalist.say(line, speaker_id)

        for party in (listener, speaker):
            if party is not None and not party.is_dead:
                party.cooldown_remaining = self.settings.chat_followup_seconds

    def _fall_back(self, agent: Agent, error: Optional[DecisionEngineError], frame: int) -> None:
        error = error or DecisionEngineError()
        if isinstance(error, OracleError):
            self.events.record(
                EventKind.ORACLE_ERROR,
                str(error),
                tick=frame,
                actor_id=agent.agent_id,
                data={"error": error.label},
            )

        destination = self.fallback.apply(agent)
        self.events.record(
            EventKind.FALLBACK,
            f"{agent.display_name} fell back: {error}",
            tick=frame,
            actor_id=agent.agent_id,
            data={"reason": error.label, "destination": destination},
        )
        log_error(f"[{agent.display_name}] {error.label}: {error}; roaming near home")

    def _template(self, name: str):
        if self.prompt_library is not None and name in self.prompt_library.templates:
            return self.prompt_library.get(name)
        if name in DEFAULT_PROMPTS.templates:
            return DEFAULT_PROMPTS.get(name)
        return None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _record_agent_event(
        self,
        agent: Agent,
        kind: EventKind,
        message: str,
        target_id: Optional[str],
        tick: int,
    ) -> None:
        entry = EventEntry(
            tick=tick,
            actor_id=agent.agent_id,
            kind=kind,
            message=message,
            target_id=target_id,
        )
        self.events.add(entry)
        agent.history.add(entry)
        target = self.agents.get(target_id) if target_id else None
        if target is not None and target is not agent:
            target.history.add(entry)

    # ------------------------------------------------------------------
    # Async drivers
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> Dict[str, int]:
        """Outstanding consultations keyed by agent id (request ids)."""

        return {agent_id: c.request_id for agent_id, c in self._consultations.items()}

    async def drain(self) -> None:
        """Wait for every outstanding consultation to finish (not yet applied)."""

        tasks = [c.task for c in self._consultations.values()] + self._detached
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._detached = [task for task in self._detached if not task.done()]

    async def shutdown(self) -> None:
        """Cancel outstanding consultations and wait for them to unwind."""

        tasks = [c.task for c in self._consultations.values()] + self._detached
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._detached = []

    async def run(
        self,
        num_frames: int,
        frame_seconds: float = 1.0 / 30.0,
        *,
        realtime: bool = False,
        on_frame: Optional[Callable[[int, Dict[str, MoveIntent]], None]] = None,
    ) -> Dict[str, object]:
        """Drive ``num_frames`` frames, yielding to the loop between frames.

        Args:
            num_frames: Number of frames to simulate
            frame_seconds: Simulated seconds per frame
            realtime: Sleep ``frame_seconds`` between frames instead of just yielding
            on_frame: Called with (frame, intents) after each frame, e.g. to
                integrate movement and advance the world

        Returns:
            Dict with the frame count and each agent's final state and intent
        """

        log_info(f"Running {num_frames} frames for {len(self.agents)} agents")
        for _ in range(num_frames):
            intents = self.tick(frame_seconds)
            if on_frame is not None:
                on_frame(self.frame, intents)
            await asyncio.sleep(frame_seconds if realtime else 0)

        return {
            "frames": self.frame,
            "agents": {
                agent_id: {"state": agent.state.value, "intent": agent.intent}
                for agent_id, agent in self.agents.items()
            },
        }

    def latest_observation(self, agent_id: str) -> Optional[Observation]:
        return self.get_agent(agent_id).observation


__all__ = [
    "ConsultationOutcome",
    "DecisionEngine",
    "NoOracleConfigured",
    "TickListener",
    "UnknownAgentError",
]
