"""Prompt templates for oracle consultations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass
class PromptTemplate:
    """Represents a templated prompt with placeholders."""

    name: str
    system: str
    user: str
    description: str = ""


class PromptLibrary:
    """Container for named prompt templates."""

    def __init__(self) -> None:
        self.templates: Dict[str, PromptTemplate] = {}

    def register(self, template: PromptTemplate) -> None:
        self.templates[template.name] = template

    def get(self, name: str) -> PromptTemplate:
        return self.templates[name]


OUTPUT_SCHEMA = (
    "{\n"
    "  \"action\": \"idle|roam|gather|moveTo|attack|heal|chat\",\n"
    "  \"object_id\": \"id of the object to gather (gather only)\",\n"
    "  \"target_id\": \"id of the character to approach (moveTo, attack, heal, chat)\",\n"
    "  \"message\": \"what to say (chat only)\",\n"
    "  \"intent\": \"short reason, shown above your head\"\n"
    "}"
)


DEFAULT_PROMPTS = PromptLibrary()

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="decide",
        system=(
            "You are {{name}}, a character in a small village simulation. Pick your next action "
            "from what you can currently see. Only refer to ids listed in your surroundings. "
            "Respond with a single JSON object and nothing else."
        ),
        user=(
            "Persona:\n{{persona}}\n\n"
            "Current Status:\n{{status}}\n\n"
            "Inventory:\n{{inventory}}\n\n"
            "Nearby Characters:\n{{nearby_characters}}\n\n"
            "Nearby Objects:\n{{nearby_objects}}\n\n"
            "Recent Events:\n{{recent_events}}\n\n"
            "Respond with JSON matching this schema:\n"
            "{{output_schema}}\n\n"
            "Examples:\n"
            "{\"action\": \"gather\", \"object_id\": \"Tree_1\", \"intent\": \"Collecting wood\"}\n"
            "{\"action\": \"moveTo\", \"target_id\": \"Player_0\", \"intent\": \"Going to greet the newcomer\"}\n"
            "{\"action\": \"chat\", \"target_id\": \"Farmer Giles_2\", \"message\": \"Fine weather for the harvest!\", \"intent\": \"Being friendly\"}\n"
            "{\"action\": \"roam\", \"intent\": \"Stretching my legs\"}\n"
            "{\"action\": \"idle\", \"intent\": \"Resting for a moment\"}\n\n"
            "Return JSON only."
        ),
        description="Chooses the agent's next action from its surroundings.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="chat_reply",
        system=(
            "You are {{name}}, a character in a small village simulation, with the following "
            "persona: {{persona}}\n"
            "Stay in character. Respond with a single JSON object and nothing else."
        ),
        user=(
            "{{speaker}} just said to you: \"{{message}}\"\n\n"
            "Recent events observed by you:\n{{recent_events}}\n\n"
            "Answer in 1-2 brief sentences as JSON like {\"response\": \"Your response here.\"}"
        ),
        description="Answers a chat line addressed to the agent.",
    )
)


__all__ = ["DEFAULT_PROMPTS", "OUTPUT_SCHEMA", "PromptLibrary", "PromptTemplate"]
