"""Decision scheduling: when to consult the oracle.

Three triggers can ask for a fresh decision:

- the per-agent cooldown (base + uniform jitter) ran out
- the change detector reported a significant change
- the agent just returned to idle after finishing an action

A consultation only starts when none is in flight for the agent and the
minimum interval since the last start has passed. A trigger blocked by the
minimum interval is consumed and the cooldown is re-armed to the time left in
that interval, so the retry is itself a cooldown trigger. A trigger blocked by
an in-flight request is dropped and the cooldown re-armed; that request's
answer will be applied anyway.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from villagemind.agent import Agent
from villagemind.config import EngineSettings
from villagemind.schemas import AgentState


DEFAULT_INTERRUPTIBLE_STATES: FrozenSet[str] = frozenset(
    {AgentState.IDLE.value, AgentState.ROAMING.value, AgentState.CHATTING.value}
)


class Trigger(str, Enum):
    COOLDOWN = "cooldown"
    SIGNIFICANT_CHANGE = "significant_change"
    ACTION_FINISHED = "action_finished"


@dataclass(frozen=True)
class DecisionCadence:
    """Timing knobs for one engine's scheduler."""

    cooldown_seconds: float = 5.0
    jitter_seconds: float = 5.0
    min_request_interval: float = 10.0
    interruptible_states: FrozenSet[str] = field(default_factory=lambda: DEFAULT_INTERRUPTIBLE_STATES)

    def next_cooldown(self, rng: random.Random) -> float:
        """Return a fresh cooldown: base plus uniform jitter."""

        return self.cooldown_seconds + rng.random() * max(self.jitter_seconds, 0.0)

    def is_interruptible(self, state: AgentState) -> bool:
        return state.value in self.interruptible_states

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "DecisionCadence":
        return cls(
            cooldown_seconds=settings.cooldown_seconds,
            jitter_seconds=settings.cooldown_jitter_seconds,
            min_request_interval=settings.min_request_interval_seconds,
            interruptible_states=frozenset(settings.interruptible_states),
        )


@dataclass(frozen=True)
class ScheduleDecision:
    """Outcome of one scheduler evaluation."""

    start: bool
    trigger: Optional[Trigger] = None
    blocked_by: Optional[str] = None


NO_TRIGGER = ScheduleDecision(start=False)


class DecisionScheduler:
    """Owns cooldown clocks and the in-flight guard for every agent."""

    def __init__(
        self,
        cadence: Optional[DecisionCadence] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.cadence = cadence or DecisionCadence()
        self.rng = rng or random.Random()

    def arm(self, agent: Agent) -> float:
        agent.cooldown_remaining = self.cadence.next_cooldown(self.rng)
        return agent.cooldown_remaining

    def evaluate(
        self,
        agent: Agent,
        *,
        dt: float,
        now: float,
        changed: bool,
        just_finished: bool,
    ) -> ScheduleDecision:
        """Decide whether ``agent`` starts a consultation this tick.

        Starting marks the agent in flight, bumps its request id and records
        ``now`` as the start time.
        """

        if agent.is_dead:
            return NO_TRIGGER

        agent.cooldown_remaining = max(0.0, agent.cooldown_remaining - dt)

        trigger = self._detect(agent, changed=changed, just_finished=just_finished)
        if trigger is None:
            return NO_TRIGGER

        if agent.in_flight:
            # The outstanding answer will be applied; nothing to queue.
            self.arm(agent)
            return ScheduleDecision(start=False, trigger=trigger, blocked_by="in_flight")

        if (
            agent.last_request_started is not None
            and now - agent.last_request_started < self.cadence.min_request_interval
        ):
            agent.cooldown_remaining = agent.last_request_started + self.cadence.min_request_interval - now
            return ScheduleDecision(start=False, trigger=trigger, blocked_by="min_interval")

        self.begin(agent, now)
        return ScheduleDecision(start=True, trigger=trigger)

    def begin(self, agent: Agent, now: float) -> int:
        """Mark ``agent`` in flight for a new request and return its id."""

        self.arm(agent)
        agent.in_flight = True
        agent.last_request_started = now
        return agent.invalidate_requests()

    def finish(self, agent: Agent) -> None:
        """Clear the in-flight guard. Called for every finished consultation."""

        agent.in_flight = False

    def _detect(self, agent: Agent, *, changed: bool, just_finished: bool) -> Optional[Trigger]:
        if changed:
            return Trigger.SIGNIFICANT_CHANGE
        if just_finished:
            return Trigger.ACTION_FINISHED

        if agent.cooldown_remaining <= 0.0 and self.cadence.is_interruptible(agent.state):
            return Trigger.COOLDOWN
        return None


__all__ = [
    "DEFAULT_INTERRUPTIBLE_STATES",
    "DecisionCadence",
    "DecisionScheduler",
    "NO_TRIGGER",
    "ScheduleDecision",
    "Trigger",
]
