"""Shared fixtures: an in-memory world, agent builders and a scripted oracle."""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

import pytest

from villagemind.agent import Agent
from villagemind.cognition.renderers import RenderedPrompt
from villagemind.schemas import CharacterRecord, ObjectRecord, Vec3
from villagemind.world import Capabilities, InMemoryWorld, SimpleBody


ALL_CAPABILITIES = ("combat", "chat", "gather")


class ScriptedTransport:
    """Oracle transport that replays canned answers (or raises canned errors)."""

    def __init__(
        self,
        responses: Sequence[Union[str, BaseException]] = (),
        *,
        delay: float = 0.0,
    ) -> None:
        self.responses: List[Union[str, BaseException]] = list(responses)
        self.delay = delay
        self.calls: List[Tuple[RenderedPrompt, Optional[str]]] = []

    async def complete(self, prompt: RenderedPrompt, credential: Optional[str]) -> str:
        self.calls.append((prompt, credential))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            return '{"action": "idle", "intent": "Nothing to do"}'
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def world() -> InMemoryWorld:
    return InMemoryWorld()


@pytest.fixture
def make_agent(world: InMemoryWorld) -> Callable[..., Tuple[Agent, SimpleBody]]:
    """Register a character in ``world`` and wrap it in an ``Agent``."""

    def _make(
        agent_id: str = "npc_1",
        position: Vec3 = (0.0, 0.0, 0.0),
        *,
        capabilities: Iterable[str] = ALL_CAPABILITIES,
        health: float = 100.0,
        **agent_fields,
    ) -> Tuple[Agent, SimpleBody]:
        world.add_character(
            CharacterRecord(
                id=agent_id,
                name=agent_fields.pop("name", agent_id),
                position=position,
                health=health,
            )
        )
        body = SimpleBody(world, agent_id)
        enabled = set(capabilities)
        agent = Agent(
            agent_id=agent_id,
            name=world.characters[agent_id].name,
            capabilities=Capabilities(
                mover=body,
                combatant=body if "combat" in enabled else None,
                conversationalist=body if "chat" in enabled else None,
                gatherer=body if "gather" in enabled else None,
            ),
            home_position=agent_fields.pop("home_position", position),
            **agent_fields,
        )
        return agent, body

    return _make


@pytest.fixture
def add_character(world: InMemoryWorld) -> Callable[..., CharacterRecord]:
    def _add(character_id: str, position: Vec3 = (2.0, 0.0, 0.0), **fields) -> CharacterRecord:
        return world.add_character(CharacterRecord(id=character_id, position=position, **fields))

    return _add


@pytest.fixture
def add_object(world: InMemoryWorld) -> Callable[..., ObjectRecord]:
    def _add(object_id: str, position: Vec3 = (4.0, 0.0, 0.0), **fields) -> ObjectRecord:
        fields.setdefault("type", "tree")
        return world.add_object(ObjectRecord(id=object_id, position=position, **fields))

    return _add


@pytest.fixture
def scripted_transport() -> Callable[..., ScriptedTransport]:
    def _build(*responses: Union[str, BaseException], delay: float = 0.0) -> ScriptedTransport:
        return ScriptedTransport(responses, delay=delay)

    return _build
