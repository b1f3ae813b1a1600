"""Context assembly for oracle consultations.

``DecisionContext`` gathers everything the decision prompt needs (persona,
status, inventory, the observation and recent history) and exposes text
sections that templates pull in through placeholders. ``ChatReplyContext`` is
the smaller view used when an addressed character answers a chat line.
Rendering is fully deterministic: identical inputs always produce identical
text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from villagemind.agent import Agent
from villagemind.config import EngineSettings
from villagemind.cognition.prompts import OUTPUT_SCHEMA
from villagemind.schemas import CharacterSummary, EventEntry, Observation, ObjectSummary, Vec3


def format_position(position: Vec3) -> str:
    return f"({position[0]:.1f}, {position[1]:.1f}, {position[2]:.1f})"


@dataclass
class DecisionContext:
    """Structured context passed to the decision prompt."""

    agent_id: str
    name: str
    persona: str
    state: str
    intent: str
    observation: Observation
    inventory: str = "Empty"
    history: List[EventEntry] = field(default_factory=list)
    max_characters: int = 5
    max_objects: int = 5

    @property
    def position(self) -> Vec3:
        return self.observation.self_summary.position

    def status_text(self) -> str:
        summary = self.observation.self_summary
        lines = [
            f"- Health: {summary.health:g}/{summary.max_health:g}",
            f"- Current action: {self.state}",
            f"- Position: {format_position(summary.position)}",
            f"- Current intent: {self.intent}",
        ]
        return "\n".join(lines)

    def characters_text(self) -> str:
        return _capped_lines(
            self.observation.nearby_characters,
            self.max_characters,
            _describe_character,
            empty="- None",
        )

    def objects_text(self) -> str:
        return _capped_lines(
            self.observation.nearby_objects,
            self.max_objects,
            _describe_object,
            empty="- None",
        )

    def history_text(self) -> str:
        if not self.history:
            return "- None"
        return "\n".join(f"- {entry.message}" for entry in self.history)

    def placeholders(self) -> Dict[str, str]:
        return {
            "{{agent_id}}": self.agent_id,
            "{{name}}": self.name,
            "{{persona}}": self.persona,
            "{{status}}": self.status_text(),
            "{{inventory}}": self.inventory,
            "{{nearby_characters}}": self.characters_text(),
            "{{nearby_objects}}": self.objects_text(),
            "{{recent_events}}": self.history_text(),
            "{{output_schema}}": OUTPUT_SCHEMA,
            "{{context_json}}": self.to_json(),
        }

    def to_payload(self) -> dict:
        """JSON-serializable view, used by debug output."""

        return {
            "agent_id": self.agent_id,
            "name": self.name,
            "persona": self.persona,
            "state": self.state,
            "intent": self.intent,
            "inventory": self.inventory,
            "observation": self.observation.model_dump(mode="json"),
            "history": [entry.message for entry in self.history],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), indent=2)


def _describe_character(summary: CharacterSummary) -> str:
    label = summary.name or summary.id
    status = "dead" if summary.is_dead else f"health {summary.health:g}"
    return (
        f"- {label} (id: {summary.id}) at {format_position(summary.position)}, "
        f"{status}, doing: {summary.current_action}"
    )


def _describe_object(summary: ObjectSummary) -> str:
    line = f"- {summary.type} (id: {summary.id}) at {format_position(summary.position)}"
    if summary.resource:
        line += f", yields {summary.resource}"
    return line


def _capped_lines(items: Sequence, limit: int, describe, *, empty: str) -> str:
    if not items:
        return empty
    limit = max(limit, 0)
    lines = [describe(item) for item in items[:limit]]
    hidden = len(items) - limit
    if hidden > 0:
        lines.append(f"- ... and {hidden} more")
    return "\n".join(lines)


def build_decision_context(
    agent: Agent,
    observation: Observation,
    *,
    settings: Optional[EngineSettings] = None,
) -> DecisionContext:
    """Collect the agent's situation into a ``DecisionContext``."""

    settings = settings or EngineSettings()
    gatherer = agent.capabilities.gatherer
    inventory = gatherer.inventory_summary() if gatherer is not None else "Not applicable"

    return DecisionContext(
        agent_id=agent.agent_id,
        name=agent.display_name,
        persona=agent.persona,
        state=agent.state.value,
        intent=agent.intent,
        observation=observation,
        inventory=inventory,
        history=agent.history.recent(settings.context_history_entries),
        max_characters=settings.max_context_characters,
        max_objects=settings.max_context_objects,
    )


@dataclass
class ChatReplyContext:
    """What an addressed character knows when answering a chat line."""

    agent_id: str
    name: str
    persona: str
    speaker: str
    message: str
    history: List[EventEntry] = field(default_factory=list)

    def history_text(self) -> str:
        if not self.history:
            return "Nothing significant recently."
        return "\n".join(entry.message for entry in self.history)

    def placeholders(self) -> Dict[str, str]:
        return {
            "{{agent_id}}": self.agent_id,
            "{{name}}": self.name,
            "{{persona}}": self.persona,
            "{{speaker}}": self.speaker,
            "{{message}}": self.message,
            "{{recent_events}}": self.history_text(),
        }


def build_chat_reply_context(
    listener: Agent,
    speaker_name: str,
    message: str,
    *,
    settings: Optional[EngineSettings] = None,
) -> ChatReplyContext:
    settings = settings or EngineSettings()
    return ChatReplyContext(
        agent_id=listener.agent_id,
        name=listener.display_name,
        persona=listener.persona or "a friendly villager",
        speaker=speaker_name,
        message=message,
        history=listener.history.recent(settings.context_history_entries),
    )


__all__ = [
    "ChatReplyContext",
    "DecisionContext",
    "build_chat_reply_context",
    "build_decision_context",
    "format_position",
]
