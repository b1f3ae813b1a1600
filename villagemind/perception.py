"""
Observation construction and change detection.

The observer turns a live world query into an immutable ``Observation`` of
what one agent can perceive:

- the agent's own health, position and state label
- every other live-or-dead character within perception radius
- every visible, interactable object within perception radius

Entities flagged as removed never appear. Only the current and previous
observation are kept per agent; the change detector compares exactly those
two.

Usage:
    observer = Observer(world)
    observation = observer.update(agent, tick=12)
    if significant_change(agent.observation, agent.previous_observation):
        ...
"""

from __future__ import annotations

from typing import Optional

from .agent import Agent
from .errors import ObservationUnavailable
from .schemas import Observation, SelfSummary
from .world import WorldSnapshotProvider


DEFAULT_HEALTH_THRESHOLD = 10.0


def build_observation(agent: Agent, world: WorldSnapshotProvider, tick: int = 0) -> Observation:
    """Build one agent's observation from the live world.

    Raises:
        ObservationUnavailable: If the world query itself fails.
    """

    position = agent.capabilities.mover.position()
    try:
        nearby = world.nearby(position, agent.perception_radius)
        self_record = world.get_character(agent.agent_id)
    except Exception as exc:
        raise ObservationUnavailable(
            f"World query failed for {agent.agent_id}: {exc}"
        ) from exc

    if self_record is not None:
        self_summary = SelfSummary(
            id=agent.agent_id,
            position=position,
            health=self_record.health,
            max_health=self_record.max_health,
            is_dead=self_record.is_dead,
            current_action=agent.state.value,
        )
    else:
        self_summary = SelfSummary(
            id=agent.agent_id,
            position=position,
            health=0.0,
            current_action=agent.state.value,
            present=False,
        )

    characters = tuple(
        record.summary()
        for record in nearby.characters
        if record.id != agent.agent_id and not record.removed
    )
    objects = tuple(
        record.summary()
        for record in nearby.objects
        if not record.removed and record.visible and record.is_interactable
    )

    return Observation(
        tick=tick,
        self_summary=self_summary,
        nearby_characters=characters,
        nearby_objects=objects,
    )


def empty_observation(agent: Agent, tick: int = 0) -> Observation:
    """Observation used when the world cannot be queried."""

    return Observation(
        tick=tick,
        self_summary=SelfSummary(
            id=agent.agent_id,
            position=agent.capabilities.mover.position(),
            health=agent.observation.self_summary.health if agent.observation else 0.0,
            max_health=agent.observation.self_summary.max_health if agent.observation else 100.0,
            current_action=agent.state.value,
        ),
    )


class Observer:
    """Samples observations and rotates the agent's current/previous pair."""

    def __init__(self, world: WorldSnapshotProvider) -> None:
        self.world = world

    def update(self, agent: Agent, tick: int = 0) -> Observation:
        """Replace the agent's current observation, keeping the old one as previous.

        Raises:
            ObservationUnavailable: The pair is still rotated (to an empty
                observation) before the error propagates.
        """

        try:
            observation = build_observation(agent, self.world, tick)
        except ObservationUnavailable:
            self._rotate(agent, empty_observation(agent, tick))
            raise
        self._rotate(agent, observation)
        return observation

    @staticmethod
    def _rotate(agent: Agent, observation: Observation) -> None:
        agent.previous_observation = agent.observation
        agent.observation = observation


def significant_change(
    current: Optional[Observation],
    previous: Optional[Observation],
    health_threshold: float = DEFAULT_HEALTH_THRESHOLD,
) -> bool:
    """Return ``True`` when the surroundings changed enough to reconsider.

    Rules, first match wins:
    1. nearby character count differs
    2. a character seen in both snapshots flipped alive/dead, or its health
       moved by more than ``health_threshold``
    3. nearby object count differs

    Without a baseline (either snapshot missing) there is nothing to compare.
    """

    if current is None or previous is None:
        return False

    if len(current.nearby_characters) != len(previous.nearby_characters):
        return True

    earlier = {summary.id: summary for summary in previous.nearby_characters}
    for summary in current.nearby_characters:
        before = earlier.get(summary.id)
        if before is None:
            continue
        if summary.is_dead != before.is_dead:
            return True
        if abs(summary.health - before.health) > health_threshold:
            return True

    return len(current.nearby_objects) != len(previous.nearby_objects)
