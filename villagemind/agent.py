"""Per-agent decision state.

An ``Agent`` is owned exclusively by the engine's tick: the state machine,
scheduler and consultation consumer are the only writers. Observations live
on the agent too (current + previous) so the change detector and validator
always see the freshest snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .event_log import EventLog
from .schemas import ActionKind, AgentState, Observation, Vec3
from .world import Capabilities


@dataclass
class Agent:
    """Mutable record for one autonomous character."""

    agent_id: str
    capabilities: Capabilities
    name: Optional[str] = None
    home_position: Vec3 = (0.0, 0.0, 0.0)
    perception_radius: float = 20.0
    wander_radius: float = 10.0
    persona: str = "A villager going about their day."

    state: AgentState = AgentState.IDLE
    previous_state: AgentState = AgentState.IDLE
    target_id: Optional[str] = None
    resource_id: Optional[str] = None
    target_action: Optional[ActionKind] = None
    message: Optional[str] = None
    intent: str = "Initializing..."
    destination: Optional[Vec3] = None

    # Scheduling
    cooldown_remaining: float = 0.0
    in_flight: bool = False
    request_id: int = 0
    last_request_started: Optional[float] = None

    # Gathering
    gather_timer: float = 0.0
    gather_duration: float = 0.0

    observation: Optional[Observation] = None
    previous_observation: Optional[Observation] = None
    history: EventLog = field(default_factory=lambda: EventLog(max_entries=50))

    @property
    def display_name(self) -> str:
        return self.name or self.agent_id

    @property
    def is_dead(self) -> bool:
        return self.state == AgentState.DEAD

    def clear_targets(self) -> None:
        """Drop every target/action/message field in one step."""

        self.target_id = None
        self.resource_id = None
        self.target_action = None
        self.message = None
        self.destination = None
        self.gather_timer = 0.0
        self.gather_duration = 0.0

    def invalidate_requests(self) -> int:
        """Bump the request id so any outstanding consultation result is stale."""

        self.request_id += 1
        return self.request_id
