"""Deterministic default behaviour: wander near home.

Applied whenever the oracle path fails: transport errors, timeouts, parse
failures and validation rejections all end here. The fallback never raises.
"""

from __future__ import annotations

import random
from typing import Optional

from villagemind.agent import Agent
from villagemind.movement import random_point_around
from villagemind.schemas import AgentState, Vec3
from villagemind.world import WorldSnapshotProvider


FALLBACK_INTENT = "Exploring (fallback)"


class FallbackPolicy:
    """Sends an agent roaming to a random point within its wander radius."""

    def __init__(
        self,
        world: Optional[WorldSnapshotProvider] = None,
        *,
        rng: Optional[random.Random] = None,
        intent: str = FALLBACK_INTENT,
    ) -> None:
        self.world = world
        self.rng = rng or random.Random()
        self.intent = intent

    def pick_destination(self, agent: Agent) -> Vec3:
        home = agent.home_position
        x, z = random_point_around(home, agent.wander_radius, self.rng)
        return (x, self._ground_height(x, z, default=home[1]), z)

    def apply(self, agent: Agent) -> Optional[Vec3]:
        """Switch ``agent`` to roaming. Dead agents are left untouched."""

        if agent.is_dead:
            return None
        destination = self.pick_destination(agent)
        agent.clear_targets()
        agent.destination = destination
        agent.previous_state = agent.state
        agent.state = AgentState.ROAMING
        agent.intent = self.intent
        return destination

    def _ground_height(self, x: float, z: float, *, default: float) -> float:
        if self.world is None:
            return default
        try:
            return float(self.world.terrain_height(x, z))
        except Exception:
            return default


__all__ = ["FALLBACK_INTENT", "FallbackPolicy"]
