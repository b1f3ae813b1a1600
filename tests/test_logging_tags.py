"""Tests for truthful logging tags ([AI] vs [•] vs [!]) in engine output.

These tests assert that:
- starting a consultation prints [AI]
- an applied decision prints [✓]
- a fallback prints [!] and never [✓]
- LOG_LEVEL decides which of them reach the console
"""

from __future__ import annotations

import contextlib
import io
import random

import pytest

from villagemind import DecisionEngine, OracleClient
from villagemind.config import Config
from villagemind.logging_utils import colored, Color, enabled


async def _run_two_frames(engine):
    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        engine.tick(0.1)
        await engine.drain()
        engine.tick(0.1)
    return buf.getvalue()


@pytest.fixture(autouse=True)
def no_color(monkeypatch):
    monkeypatch.setenv("VILLAGEMIND_NO_COLOR", "1")
    monkeypatch.setattr(Config, "LOG_LEVEL", "INFO")


@pytest.mark.asyncio
async def test_decision_tags(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1", name="Giles")
    engine = DecisionEngine(
        world,
        oracle=OracleClient(scripted_transport('{"action":"idle","intent":"rest"}')),
        rng=random.Random(0),
    )
    engine.add_agent(agent)

    out = await _run_two_frames(engine)

    assert "[AI] [Giles] Consulting oracle (cooldown)" in out
    assert "[✓] [Giles] Decided: idle" in out
    assert "[!]" not in out


@pytest.mark.asyncio
async def test_fallback_tags(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1", name="Giles")
    engine = DecisionEngine(
        world,
        oracle=OracleClient(scripted_transport('{"action":"gather","object_id":"Tree_3","intent":"wood"}')),
        rng=random.Random(0),
    )
    engine.add_agent(agent)

    out = await _run_two_frames(engine)

    assert "[!] [Giles] ResponseValidationError" in out
    assert "roaming near home" in out
    assert "[✓]" not in out


@pytest.mark.asyncio
async def test_verbose_flag_prints_intent(world, make_agent, scripted_transport, monkeypatch):
    monkeypatch.setenv("VILLAGEMIND_VERBOSE", "1")
    agent, _ = make_agent("npc_1")
    engine = DecisionEngine(
        world,
        oracle=OracleClient(scripted_transport('{"action":"idle","intent":"Watching the clouds"}')),
        rng=random.Random(0),
    )
    engine.add_agent(agent)

    out = await _run_two_frames(engine)

    assert "Intent: Watching the clouds" in out


def test_colored_respects_no_color():
    assert colored("plain", Color.RED) == "plain"


def test_colored_wraps_text(monkeypatch):
    monkeypatch.delenv("VILLAGEMIND_NO_COLOR", raising=False)
    text = colored("hot", Color.RED, bold=True)

    assert text.startswith(Color.BOLD.value + Color.RED.value)
    assert text.endswith(Color.RESET.value)


@pytest.mark.asyncio
async def test_error_level_prints_only_failures(world, make_agent, scripted_transport, monkeypatch):
    monkeypatch.setattr(Config, "LOG_LEVEL", "ERROR")
    agent, _ = make_agent("npc_1", name="Giles")
    engine = DecisionEngine(
        world,
        oracle=OracleClient(scripted_transport('{"action":"gather","object_id":"Tree_3","intent":"wood"}')),
        rng=random.Random(0),
    )
    engine.add_agent(agent)

    out = await _run_two_frames(engine)

    assert "[AI]" not in out
    assert "[!] [Giles] ResponseValidationError" in out


def test_engine_steps_print_only_at_debug(world, make_agent, monkeypatch):
    agent, _ = make_agent("npc_1", name="Giles")

    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        DecisionEngine(world).add_agent(agent)
    assert "[•]" not in buf.getvalue()

    monkeypatch.setattr(Config, "LOG_LEVEL", "debug")
    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        DecisionEngine(world).add_agent(agent)
    assert "[•] [Giles] Registered with decision engine" in buf.getvalue()


def test_unknown_level_behaves_like_info(monkeypatch):
    monkeypatch.setattr(Config, "LOG_LEVEL", "chatty")

    assert enabled("INFO") is True
    assert enabled("DEBUG") is False
