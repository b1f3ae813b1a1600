"""End-to-end tests for the decision engine tick loop.

All oracle traffic goes through a scripted transport; no network access.
"""

from __future__ import annotations

import asyncio
import random

import pytest

from villagemind import DecisionEngine, EngineSettings, OracleClient
from villagemind.cognition.fallback import FALLBACK_INTENT
from villagemind.errors import OracleTransportError
from villagemind.orchestrator import CHAT_REPLY_FAILURE_LINE
from villagemind.movement import planar_distance
from villagemind.schemas import ActionKind, AgentState, EventKind


def _engine(world, transport=None, **settings):
    oracle = OracleClient(transport, timeout_seconds=settings.pop("timeout", 1.0)) if transport else None
    return DecisionEngine(
        world,
        oracle=oracle,
        settings=EngineSettings(**settings),
        rng=random.Random(7),
    )


@pytest.mark.asyncio
async def test_attack_on_live_target_moves_agent_towards_it(world, make_agent, add_character, scripted_transport):
    agent, _ = make_agent("npc_1", wander_radius=10.0)
    add_character("npc_7", position=(6.0, 0.0, 0.0))
    transport = scripted_transport('{"action":"attack","target_id":"npc_7","intent":"hostile"}')
    engine = _engine(world, transport)
    engine.add_agent(agent)

    engine.tick(0.1)
    assert agent.in_flight is True

    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.MOVING_TO_TARGET
    assert agent.target_action == ActionKind.ATTACK
    assert agent.target_id == "npc_7"
    assert agent.intent == "hostile"
    assert agent.in_flight is False
    assert engine.events.of_kind(EventKind.DECISION)


@pytest.mark.asyncio
async def test_gather_on_missing_object_falls_back_to_roaming(world, make_agent, add_object, scripted_transport):
    agent, _ = make_agent("npc_1", wander_radius=10.0)
    add_object("Tree_1", resource="wood")
    transport = scripted_transport('{"action":"gather","object_id":"Tree_3","intent":"need wood"}')
    engine = _engine(world, transport)
    engine.add_agent(agent)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.ROAMING
    assert agent.intent == FALLBACK_INTENT
    assert agent.resource_id is None
    assert agent.destination is not None
    assert planar_distance(agent.destination, agent.home_position) <= 10.0
    fallbacks = engine.events.of_kind(EventKind.FALLBACK)
    assert fallbacks and fallbacks[-1].data["reason"] == "ResponseValidationError"


@pytest.mark.asyncio
async def test_oracle_timeout_falls_back_like_a_rejection(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1", wander_radius=10.0)
    transport = scripted_transport('{"action":"idle","intent":"too late"}', delay=0.5)
    engine = _engine(world, transport, timeout=0.01)
    engine.add_agent(agent)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.ROAMING
    assert agent.intent == FALLBACK_INTENT
    assert planar_distance(agent.destination, agent.home_position) <= 10.0
    errors = engine.events.of_kind(EventKind.ORACLE_ERROR)
    assert errors and errors[-1].data["error"] == "OracleTimeout"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "",
        "{\"action\": \"gather\"}",
        "{\"intent\": \"missing action\"}",
        "x" * 150,
        "{not json at all",
        "{\"action\": \"dance\", \"intent\": \"party\"}",
    ],
)
async def test_malformed_responses_fall_back(world, make_agent, scripted_transport, raw):
    agent, _ = make_agent("npc_1", wander_radius=10.0)
    engine = _engine(world, scripted_transport(raw))
    engine.add_agent(agent)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.ROAMING
    assert agent.intent == FALLBACK_INTENT
    assert planar_distance(agent.destination, agent.home_position) <= 10.0


@pytest.mark.asyncio
async def test_attack_on_dead_target_is_rejected(world, make_agent, add_character, scripted_transport):
    agent, _ = make_agent("npc_1")
    add_character("npc_7", position=(3.0, 0.0, 0.0), health=0.0, is_dead=True)
    engine = _engine(world, scripted_transport('{"action":"attack","target_id":"npc_7","intent":"finish it"}'))
    engine.add_agent(agent)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.ROAMING
    assert agent.target_id is None
    assert agent.intent == FALLBACK_INTENT


@pytest.mark.asyncio
async def test_short_plain_text_becomes_idle_with_text_as_intent(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1")
    engine = _engine(world, scripted_transport("Just enjoying the breeze."))
    engine.add_agent(agent)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.IDLE
    assert agent.intent == "Just enjoying the breeze."


@pytest.mark.asyncio
async def test_target_dying_while_request_in_flight_is_caught_at_apply(
    world, make_agent, add_character, scripted_transport
):
    agent, _ = make_agent("npc_1")
    target = add_character("npc_7", position=(6.0, 0.0, 0.0))
    engine = _engine(world, scripted_transport('{"action":"chat","target_id":"npc_7","message":"hi","intent":"greet"}'))
    engine.add_agent(agent)

    engine.tick(0.1)
    target.is_dead = True
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.ROAMING
    assert agent.intent == FALLBACK_INTENT


@pytest.mark.asyncio
async def test_gather_round_trip_adds_item_exactly_once(world, make_agent, add_object, scripted_transport):
    agent, body = make_agent("npc_1")
    tree = add_object("Tree_1", position=(4.0, 0.0, 0.0), resource="wood", gather_time=1.0, is_depletable=True)
    engine = _engine(world, scripted_transport('{"action":"gather","object_id":"Tree_1","intent":"need wood"}'))
    engine.add_agent(agent)

    dt = 0.05
    engine.tick(dt)
    await engine.drain()

    states = []
    for _ in range(200):
        intents = engine.tick(dt)
        body.integrate(intents[agent.agent_id], dt)
        body.update(dt)
        world.advance(dt)
        if not states or states[-1] != agent.state:
            states.append(agent.state)
        if AgentState.GATHERING in states and agent.state == AgentState.IDLE:
            break
        await asyncio.sleep(0)

    assert states[:3] == [AgentState.MOVING_TO_RESOURCE, AgentState.GATHERING, AgentState.IDLE]
    assert body.inventory == {"wood": 1}
    assert tree.visible is False
    assert len(agent.history.of_kind(EventKind.GATHER_COMPLETE)) == 1


@pytest.mark.asyncio
async def test_at_most_one_request_in_flight(world, make_agent, add_character, scripted_transport):
    agent, _ = make_agent("npc_1")
    transport = scripted_transport('{"action":"idle","intent":"waiting"}', delay=0.5)
    engine = _engine(world, transport, min_request_interval_seconds=0.0)
    engine.add_agent(agent)

    for index in range(10):
        # A new neighbour every frame forces a significant change.
        add_character(f"visitor_{index}", position=(float(index % 5), 0.0, 1.0))
        engine.tick(0.1)
        assert len(engine.in_flight) <= 1
        await asyncio.sleep(0)

    assert len(transport.calls) == 1
    await engine.shutdown()


@pytest.mark.asyncio
async def test_no_trigger_means_no_request(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1")
    agent.cooldown_remaining = 100.0
    transport = scripted_transport()
    engine = _engine(world, transport)
    engine.add_agent(agent)

    for _ in range(20):
        engine.tick(0.1)
        await asyncio.sleep(0)

    assert transport.calls == []
    assert agent.in_flight is False


@pytest.mark.asyncio
async def test_reset_discards_outstanding_response(world, make_agent, add_character, scripted_transport):
    agent, _ = make_agent("npc_1")
    add_character("npc_7", position=(6.0, 0.0, 0.0))
    engine = _engine(world, scripted_transport('{"action":"attack","target_id":"npc_7","intent":"hostile"}'))
    engine.add_agent(agent)

    engine.tick(0.1)
    engine.reset_agent("npc_1")
    engine.reset_agent("npc_1")
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.IDLE
    assert agent.target_id is None
    assert agent.target_action is None
    assert agent.message is None
    assert agent.in_flight is False
    assert not engine.events.of_kind(EventKind.DECISION)


@pytest.mark.asyncio
async def test_dead_agent_ignores_late_response(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1")
    engine = _engine(world, scripted_transport('{"action":"roam","intent":"stroll"}', delay=0.01))
    engine.add_agent(agent)

    engine.tick(0.1)
    world.characters["npc_1"].is_dead = True
    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)
    engine.tick(0.1)

    assert agent.state == AgentState.DEAD
    assert agent.in_flight is False
    assert not engine.events.of_kind(EventKind.DECISION)
    assert engine.events.of_kind(EventKind.DIED)


@pytest.mark.asyncio
async def test_engine_without_oracle_falls_back(world, make_agent):
    agent, _ = make_agent("npc_1")
    engine = _engine(world)
    engine.add_agent(agent)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.ROAMING
    assert agent.intent == FALLBACK_INTENT
    assert engine.events.of_kind(EventKind.ORACLE_ERROR)


@pytest.mark.asyncio
async def test_transport_failure_falls_back(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1")
    engine = _engine(world, scripted_transport(OracleTransportError("connection reset")))
    engine.add_agent(agent)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)

    assert agent.state == AgentState.ROAMING
    assert agent.intent == FALLBACK_INTENT


@pytest.mark.asyncio
async def test_world_query_failure_is_recorded_not_raised(world, make_agent, monkeypatch):
    agent, _ = make_agent("npc_1")
    agent.cooldown_remaining = 100.0
    engine = _engine(world)
    engine.add_agent(agent)

    def broken(position, radius):
        raise RuntimeError("spatial index offline")

    monkeypatch.setattr(world, "nearby", broken)
    intents = engine.tick(0.1)

    assert intents["npc_1"].is_still
    assert engine.events.of_kind(EventKind.OBSERVATION_UNAVAILABLE)
    assert agent.observation is not None
    assert agent.observation.nearby_characters == ()


@pytest.mark.asyncio
async def test_collaborator_crash_never_escapes_tick(world, make_agent, monkeypatch):
    agent, body = make_agent("npc_1")
    engine = _engine(world)
    engine.add_agent(agent)

    def broken_position():
        raise RuntimeError("mesh disposed")

    monkeypatch.setattr(body, "position", broken_position)
    intents = engine.tick(0.1)

    assert intents["npc_1"].is_still
    assert engine.events.of_kind(EventKind.ENGINE_ERROR)


@pytest.mark.asyncio
async def test_chat_events_reach_both_agents_histories(world, make_agent, scripted_transport):
    speaker, speaker_body = make_agent("npc_1", position=(0.0, 0.0, 0.0))
    listener, _ = make_agent("npc_2", position=(1.0, 0.0, 0.0))
    listener.cooldown_remaining = 100.0
    transport = scripted_transport('{"action":"chat","target_id":"npc_2","message":"Morning!","intent":"greet"}')
    engine = _engine(world, transport)
    engine.add_agent(speaker)
    engine.add_agent(listener)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)  # applies: movingToTarget
    engine.tick(0.1)  # already in range: arrives and chats

    assert speaker.state == AgentState.CHATTING
    assert speaker_body.spoken == ["Morning!"]
    assert speaker.history.of_kind(EventKind.CHAT)
    assert listener.history.of_kind(EventKind.CHAT)

    assert engine.end_conversation("npc_1") is True
    assert speaker.state == AgentState.IDLE
    await engine.shutdown()


@pytest.mark.asyncio
async def test_report_event_logs_external_outcomes(world, make_agent):
    agent, _ = make_agent("npc_1")
    engine = _engine(world)
    engine.add_agent(agent)

    engine.report_event("npc_1", EventKind.EXHAUSTED, "npc_1 is exhausted!")

    assert agent.history.entries[-1].kind == EventKind.EXHAUSTED
    assert engine.events.entries[-1].message == "npc_1 is exhausted!"


@pytest.mark.asyncio
async def test_removed_agent_is_no_longer_driven(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1")
    engine = _engine(world, scripted_transport('{"action":"roam","intent":"stroll"}', delay=0.01))
    engine.add_agent(agent)

    engine.tick(0.1)
    removed = engine.remove_agent("npc_1")
    await engine.drain()
    intents = engine.tick(0.1)

    assert removed is agent
    assert "npc_1" not in intents
    assert agent.state == AgentState.IDLE


@pytest.mark.asyncio
async def test_character_missing_from_world_suspends_agent(world, make_agent):
    agent, _ = make_agent("npc_1")
    engine = _engine(world)
    engine.add_agent(agent)

    world.remove_character("npc_1")
    intents = engine.tick(0.1)

    assert intents["npc_1"].is_still
    assert agent.in_flight is False
    assert agent.state == AgentState.IDLE


@pytest.mark.asyncio
async def test_run_drives_frames_and_reports_states(world, make_agent, scripted_transport):
    agent, body = make_agent("npc_1")
    engine = _engine(world, scripted_transport('{"action":"roam","intent":"stroll"}'))
    engine.add_agent(agent)
    frames = []

    def on_frame(frame, intents):
        frames.append(frame)
        body.integrate(intents["npc_1"], 0.1)

    summary = await engine.run(5, 0.1, on_frame=on_frame)

    assert frames == [1, 2, 3, 4, 5]
    assert summary["frames"] == 5
    assert summary["agents"]["npc_1"]["state"] in {s.value for s in AgentState}
    await engine.shutdown()


def test_tick_without_event_loop_falls_back(world, make_agent, scripted_transport):
    agent, _ = make_agent("npc_1")
    engine = _engine(world, scripted_transport())
    engine.add_agent(agent)

    engine.tick(0.1)

    assert agent.state == AgentState.ROAMING
    assert agent.in_flight is False
    assert agent.intent == FALLBACK_INTENT


def test_unknown_agent_commands_raise(world):
    engine = _engine(world)
    with pytest.raises(KeyError):
        engine.reset_agent("ghost")
    assert engine.remove_agent("ghost") is None


def test_tick_listeners_receive_frame_and_intents(world, make_agent):
    agent, _ = make_agent("npc_1")
    agent.cooldown_remaining = 100.0
    seen = []
    engine = DecisionEngine(world, tick_listeners=[lambda frame, intents: seen.append((frame, sorted(intents)))])
    engine.add_agent(agent)

    engine.tick(0.1)
    engine.tick(0.1)

    assert seen == [(1, ["npc_1"]), (2, ["npc_1"])]
    assert engine.latest_observation("npc_1").tick == 2


@pytest.mark.asyncio
async def test_prompt_build_failure_clears_in_flight(world, make_agent, scripted_transport, monkeypatch):
    agent, body = make_agent("npc_1")
    transport = scripted_transport('{"action":"idle","intent":"resting"}')
    engine = _engine(
        world,
        transport,
        min_request_interval_seconds=0.0,
        cooldown_seconds=0.5,
        cooldown_jitter_seconds=0.0,
    )
    engine.add_agent(agent)
    summary_calls = []
    real_summary = body.inventory_summary

    def flaky_summary():
        summary_calls.append(1)
        if len(summary_calls) == 1:
            raise RuntimeError("inventory not loaded yet")
        return real_summary()

    monkeypatch.setattr(body, "inventory_summary", flaky_summary)

    engine.tick(0.1)

    assert agent.in_flight is False
    assert agent.state == AgentState.ROAMING
    assert engine.events.of_kind(EventKind.FALLBACK)[-1].data["reason"] == "ConsultationSetupError"
    assert not engine.events.of_kind(EventKind.ENGINE_ERROR)

    for _ in range(20):
        engine.tick(0.1)
        await engine.drain()

    assert len(summary_calls) >= 2
    assert transport.calls
    assert engine.events.of_kind(EventKind.DECISION)


@pytest.mark.asyncio
async def test_min_interval_block_retries_only_as_cooldown(world, make_agent, add_character, scripted_transport):
    agent, _ = make_agent("npc_1")
    transport = scripted_transport('{"action":"idle","intent":"resting"}')
    engine = _engine(
        world,
        transport,
        min_request_interval_seconds=5.0,
        cooldown_seconds=100.0,
        cooldown_jitter_seconds=0.0,
    )
    engine.add_agent(agent)

    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)
    assert len(transport.calls) == 1

    add_character("visitor", position=(1.0, 0.0, 1.0))
    engine.tick(0.1)
    assert engine.in_flight == {}
    assert agent.cooldown_remaining == pytest.approx(4.8)

    for _ in range(30):
        engine.tick(0.1)
        await asyncio.sleep(0)
    assert len(transport.calls) == 1

    for _ in range(30):
        engine.tick(0.1)
        await engine.drain()

    assert len(transport.calls) == 2
    triggers = [entry.data["trigger"] for entry in engine.events.of_kind(EventKind.DECISION)]
    assert triggers == ["cooldown", "cooldown"]


async def _chat_until_reply_started(engine):
    engine.tick(0.1)
    await engine.drain()
    engine.tick(0.1)  # applies: movingToTarget
    engine.tick(0.1)  # arrives, says the line, listener starts its reply


def _chat_pair(make_agent):
    speaker, _ = make_agent("npc_1", position=(0.0, 0.0, 0.0), name="Giles")
    listener, listener_body = make_agent(
        "npc_2",
        position=(1.0, 0.0, 0.0),
        name="Brynn",
        persona="Gruff blacksmith.",
    )
    listener.cooldown_remaining = 100.0
    return speaker, listener, listener_body


CHAT_LINE = '{"action":"chat","target_id":"npc_2","message":"Morning!","intent":"greet"}'


@pytest.mark.asyncio
async def test_addressed_agent_replies_through_oracle(world, make_agent, scripted_transport):
    speaker, listener, listener_body = _chat_pair(make_agent)
    transport = scripted_transport(CHAT_LINE, '{"response": "Morning yourself."}')
    engine = _engine(world, transport)
    engine.add_agent(speaker)
    engine.add_agent(listener)

    await _chat_until_reply_started(engine)
    assert listener.in_flight is True
    assert engine.in_flight == {"npc_2": listener.request_id}

    await engine.drain()
    engine.tick(0.1)

    reply_prompt = transport.calls[1][0]
    assert "You are Brynn" in reply_prompt.system
    assert "Gruff blacksmith." in reply_prompt.system
    assert 'Giles just said to you: "Morning!"' in reply_prompt.user

    assert listener_body.spoken == ["Morning yourself."]
    assert listener.in_flight is False
    said = 'Brynn said "Morning yourself." to Giles'
    assert said in [entry.message for entry in speaker.history.of_kind(EventKind.CHAT)]
    assert said in [entry.message for entry in listener.history.of_kind(EventKind.CHAT)]
    assert speaker.cooldown_remaining == pytest.approx(7.0)
    assert listener.cooldown_remaining == pytest.approx(6.9)
    assert listener.state == AgentState.IDLE


@pytest.mark.asyncio
async def test_failed_reply_apologises_and_logs_chat_error(world, make_agent, scripted_transport):
    speaker, listener, listener_body = _chat_pair(make_agent)
    transport = scripted_transport(CHAT_LINE, OracleTransportError("connection reset"))
    engine = _engine(world, transport)
    engine.add_agent(speaker)
    engine.add_agent(listener)

    await _chat_until_reply_started(engine)
    await engine.drain()
    engine.tick(0.1)

    assert listener_body.spoken == [CHAT_REPLY_FAILURE_LINE]
    assert listener.history.of_kind(EventKind.CHAT_ERROR)
    assert speaker.history.of_kind(EventKind.CHAT_ERROR)
    assert listener.in_flight is False
    assert listener.state == AgentState.IDLE
    assert not engine.events.of_kind(EventKind.FALLBACK)


@pytest.mark.asyncio
async def test_reset_listener_discards_reply(world, make_agent, scripted_transport):
    speaker, listener, listener_body = _chat_pair(make_agent)
    engine = _engine(world, scripted_transport(CHAT_LINE, '{"response": "Too late."}'))
    engine.add_agent(speaker)
    engine.add_agent(listener)

    await _chat_until_reply_started(engine)
    engine.reset_agent("npc_2")
    await engine.drain()
    engine.tick(0.1)

    assert listener_body.spoken == []
    assert listener.in_flight is False
    assert not listener.history.of_kind(EventKind.CHAT_ERROR)
    assert [entry.actor_id for entry in listener.history.of_kind(EventKind.CHAT)] == ["npc_1"]


@pytest.mark.asyncio
async def test_chat_replies_can_be_switched_off(world, make_agent, scripted_transport):
    speaker, listener, listener_body = _chat_pair(make_agent)
    transport = scripted_transport(CHAT_LINE, '{"response": "Hello."}')
    engine = _engine(world, transport, chat_replies=False)
    engine.add_agent(speaker)
    engine.add_agent(listener)

    await _chat_until_reply_started(engine)
    await engine.drain()
    engine.tick(0.1)

    assert len(transport.calls) == 1
    assert listener.in_flight is False
    assert listener_body.spoken == []
