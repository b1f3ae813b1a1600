"""Hillside village: three autonomous villagers driven by the decision engine.

By default the example runs offline with a rule-based stand-in oracle (no
LLM calls):

    uv run python examples/village/run.py --seconds 60

To consult a real model (requires provider, model and API key), pass `--llm`:

    uv run python examples/village/run.py --llm --seconds 60

Environment variables expected when `--llm` is used:
- `ORACLE_PROVIDER` (e.g., `openai`, `anthropic`, `ollama`)
- `ORACLE_MODEL` (e.g., `gpt-4o-mini`)
- `ORACLE_API_KEY` (and optionally `ORACLE_API_KEY_ALT` for rate limits)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import re
from typing import Dict, List, Optional

from villagemind import Config, DecisionEngine, EngineSettings, EventKind, OracleClient
from villagemind.cognition.renderers import RenderedPrompt
from villagemind.scenario import ScenarioLoader


_ID_PATTERN = re.compile(r"^- (?P<label>.+?) \(id: (?P<id>[^)]+)\)(?P<rest>.*)$")
REPLIES = ["Likewise, friend.", "Busy day, can't stop long.", "Aye, that it is."]


class OfflineVillageOracle:
    """Rule-based transport that reads the rendered prompt like a model would.

    Picks among gathering, chatting, roaming and idling using only the ids
    listed in the prompt, so every answer passes validation unless the world
    changed while it was in flight. Chat-reply prompts get a canned line.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    async def complete(self, prompt: RenderedPrompt, credential: Optional[str]) -> str:
        await asyncio.sleep(self.rng.uniform(0.01, 0.05))
        if "just said to you" in prompt.user:
            return json.dumps({"response": self.rng.choice(REPLIES)})
        characters = self._section_ids(prompt.user, "Nearby Characters:", skip_dead=True)
        objects = self._section_ids(prompt.user, "Nearby Objects:")

        roll = self.rng.random()
        if objects and roll < 0.45:
            object_id = self.rng.choice(objects)
            return json.dumps({"action": "gather", "object_id": object_id, "intent": f"Collecting from {object_id}"})
        if characters and roll < 0.7:
            target_id = self.rng.choice(characters)
            return json.dumps(
                {
                    "action": "chat",
                    "target_id": target_id,
                    "message": self.rng.choice(["Good day!", "Seen any wolves lately?", "Fine weather."]),
                    "intent": "Passing the time of day",
                }
            )
        if roll < 0.9:
            return json.dumps({"action": "roam", "intent": "Stretching my legs"})
        return "Resting for a moment."

    @staticmethod
    def _section_ids(text: str, heading: str, *, skip_dead: bool = False) -> List[str]:
        ids: List[str] = []
        in_section = False
        for line in text.splitlines():
            if line.strip() == heading:
                in_section = True
                continue
            if in_section:
                if not line.startswith("- "):
                    break
                match = _ID_PATTERN.match(line)
                if match is None:
                    continue
                if skip_dead and ", dead," in match.group("rest"):
                    continue
                ids.append(match.group("id"))
        return ids


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Hillside village simulation")
    parser.add_argument("--llm", action="store_true", help="Consult the configured LLM instead of the offline oracle")
    parser.add_argument("--seconds", type=float, default=60.0, help="Simulated seconds to run")
    parser.add_argument("--fps", type=int, default=30, help="Frames per simulated second")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for cadence and fallback")
    parser.add_argument("--realtime", action="store_true", help="Sleep between frames")
    parser.add_argument("--scenario", default="village", help="Scenario name under examples/scenarios")
    return parser.parse_args()


def build_oracle(use_llm: bool, rng: random.Random) -> OracleClient:
    if use_llm:
        Config.validate()
        print(Config.display())
        return OracleClient.from_config()
    return OracleClient(OfflineVillageOracle(rng), timeout_seconds=Config.ORACLE_TIMEOUT_SECONDS)


async def run_village(
    seconds: float,
    *,
    use_llm: bool = False,
    fps: int = 30,
    seed: Optional[int] = None,
    realtime: bool = False,
    scenario_name: str = "village",
) -> Dict[str, object]:
    rng = random.Random(seed)
    scenario = ScenarioLoader().load(scenario_name)
    engine = DecisionEngine(
        scenario.world,
        oracle=build_oracle(use_llm, rng),
        settings=EngineSettings.from_config(),
        rng=rng,
    )
    for agent in scenario.agents:
        engine.add_agent(agent)

    frame_seconds = 1.0 / max(fps, 1)

    def on_frame(frame: int, intents) -> None:
        scenario.step_bodies(intents, frame_seconds)
        if frame % (fps * 10) == 0:
            print(f"\n--- t={frame * frame_seconds:.0f}s ---")
            for agent in scenario.agents:
                body = scenario.bodies[agent.agent_id]
                print(f"  {agent.display_name:<18} {agent.state.value:<16} {agent.intent} [{body.inventory_summary()}]")

    try:
        summary = await engine.run(int(seconds * fps), frame_seconds, realtime=realtime, on_frame=on_frame)
    finally:
        await engine.shutdown()

    summary["inventories"] = {agent_id: dict(body.inventory) for agent_id, body in scenario.bodies.items()}
    summary["decisions"] = len(engine.events.of_kind(EventKind.DECISION))
    summary["fallbacks"] = len(engine.events.of_kind(EventKind.FALLBACK))
    summary["chats"] = len(engine.events.of_kind(EventKind.CHAT))
    return summary


async def main(args: argparse.Namespace) -> None:
    try:
        summary = await run_village(
            args.seconds,
            use_llm=args.llm,
            fps=args.fps,
            seed=args.seed,
            realtime=args.realtime,
            scenario_name=args.scenario,
        )
    except ValueError as exc:
        print(f"[warning] {exc}. Falling back to the offline oracle.")
        summary = await run_village(
            args.seconds,
            use_llm=False,
            fps=args.fps,
            seed=args.seed,
            realtime=args.realtime,
            scenario_name=args.scenario,
        )

    print("\nFinal summary:")
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(main(args))
