"""
Scenario loading for JSON-defined villages.

A scenario file describes the starting population of an ``InMemoryWorld``:
autonomous agents (with persona and capabilities), other characters such as
the player, and interactable objects such as resource nodes.

Scenario file structure:
```json
{
  "name": "Hillside Village",
  "description": "...",
  "respawn_seconds": 15,
  "agents": [
    {
      "id": "Farmer Giles_2",
      "name": "Farmer Giles",
      "position": [-7, 0, 12],
      "persona": "Hardworking farmer, values community...",
      "capabilities": ["combat", "chat", "gather"]
    }
  ],
  "characters": [{"id": "Player_0", "name": "Player", "position": [0, 0, 0]}],
  "objects": [
    {"id": "Tree_1", "type": "tree", "position": [4, 0, 6], "resource": "wood",
     "gather_seconds": 3, "respawn_seconds": 20, "depletable": true}
  ]
}
```

Usage:
    loader = ScenarioLoader()
    scenario = loader.load("village")
    engine = DecisionEngine(scenario.world, oracle=client)
    for agent in scenario.agents:
        engine.add_agent(agent)
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .agent import Agent
from .config import Config
from .schemas import CharacterRecord, ObjectRecord, Vec3
from .world import Capabilities, InMemoryWorld, SimpleBody


KNOWN_CAPABILITIES = frozenset({"combat", "chat", "gather"})


@dataclass
class Scenario:
    """A loaded scenario: the world plus the agents and bodies living in it."""

    name: str
    description: str
    world: InMemoryWorld
    agents: List[Agent] = field(default_factory=list)
    bodies: Dict[str, SimpleBody] = field(default_factory=dict)

    def step_bodies(self, intents: Dict[str, Any], dt: float) -> None:
        """Integrate movement intents and advance body and world timers."""

        for agent in self.agents:
            body = self.bodies.get(agent.agent_id)
            if body is not None:
                body.record.action_label = agent.state.value
        for agent_id, body in self.bodies.items():
            intent = intents.get(agent_id)
            if intent is not None:
                body.integrate(intent, dt)
            body.update(dt)
        self.world.advance(dt)


class ScenarioLoader:
    """Load and validate village scenarios from JSON files.

    Directory structure:
    - Default: {PROJECT_ROOT}/examples/scenarios/
    - Override via constructor: ScenarioLoader(Path("/custom/scenarios"))
    - Scenario files: {scenario_name}.json (e.g., "village.json")
    """

    def __init__(self, scenarios_dir: Optional[Path] = None):
        self.scenarios_dir = scenarios_dir or Config.SCENARIOS_DIR

    def load(self, scenario_name: str) -> Scenario:
        """Load a scenario by name (without the .json extension).

        Raises:
            FileNotFoundError: If the scenario file does not exist
            ValueError: If required fields are missing or malformed
        """
        scenario_path = self.scenarios_dir / f"{scenario_name}.json"

        if not scenario_path.exists():
            raise FileNotFoundError(
                f"Scenario '{scenario_name}' not found at {scenario_path}"
            )

        data = json.loads(scenario_path.read_text())
        return self.build(data)

    def build(self, data: Dict[str, Any]) -> Scenario:
        """Build a scenario from already-parsed JSON data."""

        self._validate_scenario(data)

        world = InMemoryWorld(default_respawn_seconds=float(data.get("respawn_seconds", 15.0)))
        scenario = Scenario(
            name=data["name"],
            description=data.get("description", ""),
            world=world,
        )

        for entry in data.get("characters", []):
            world.add_character(self._parse_character(entry))

        for entry in data.get("objects", []):
            world.add_object(self._parse_object(entry))

        for entry in data["agents"]:
            record = world.add_character(self._parse_character(entry))
            body = SimpleBody(world, record.id, speed=float(entry.get("speed", 3.0)))
            agent = Agent(
                agent_id=record.id,
                name=record.name,
                capabilities=self._capabilities(body, entry.get("capabilities")),
                home_position=record.position,
                perception_radius=float(entry.get("perception_radius", 20.0)),
                wander_radius=float(entry.get("wander_radius", 10.0)),
                persona=entry.get("persona", "A villager going about their day."),
                intent=entry.get("intent", "Initializing..."),
            )
            scenario.agents.append(agent)
            scenario.bodies[agent.agent_id] = body

        return scenario

    def _validate_scenario(self, data: Dict[str, Any]) -> None:
        required = ["name", "agents"]
        missing = [key for key in required if key not in data]
        if missing:
            raise ValueError(f"Scenario missing required fields: {missing}")

        if not data["agents"]:
            raise ValueError("Scenario must have at least one agent")

        seen: set = set()
        for section in ("agents", "characters", "objects"):
            for entry in data.get(section, []):
                if "id" not in entry or "position" not in entry:
                    raise ValueError(f"Each entry in '{section}' needs 'id' and 'position'")
                if entry["id"] in seen:
                    raise ValueError(f"Duplicate id in scenario: {entry['id']}")
                seen.add(entry["id"])

        for entry in data["agents"]:
            unknown = set(entry.get("capabilities", [])) - KNOWN_CAPABILITIES
            if unknown:
                raise ValueError(
                    f"Agent {entry['id']} lists unknown capabilities: {sorted(unknown)}"
                )

    def _parse_position(self, raw: Any) -> Vec3:
        if not isinstance(raw, (list, tuple)) or len(raw) != 3:
            raise ValueError(f"Position must be [x, y, z], got {raw!r}")
        return (float(raw[0]), float(raw[1]), float(raw[2]))

    def _parse_character(self, entry: Dict[str, Any]) -> CharacterRecord:
        max_health = float(entry.get("max_health", 100.0))
        return CharacterRecord(
            id=entry["id"],
            name=entry.get("name"),
            position=self._parse_position(entry["position"]),
            health=float(entry.get("health", max_health)),
            max_health=max_health,
            action_label=entry.get("action_label", "idle"),
            tags=list(entry.get("tags", [])),
        )

    def _parse_object(self, entry: Dict[str, Any]) -> ObjectRecord:
        gather = entry.get("gather_seconds")
        respawn = entry.get("respawn_seconds")
        return ObjectRecord(
            id=entry["id"],
            type=entry.get("type", "interactable_object"),
            position=self._parse_position(entry["position"]),
            resource=entry.get("resource"),
            gather_time=float(gather) if gather is not None else None,
            respawn_time=float(respawn) if respawn is not None else None,
            is_depletable=bool(entry.get("depletable", False)),
        )

    def _capabilities(self, body: SimpleBody, names: Optional[List[str]]) -> Capabilities:
        # Omitted capability list means a fully capable villager.
        enabled = KNOWN_CAPABILITIES if names is None else set(names)
        return Capabilities(
            mover=body,
            combatant=body if "combat" in enabled else None,
            conversationalist=body if "chat" in enabled else None,
            gatherer=body if "gather" in enabled else None,
        )


def load_scenario(scenario_name: str, scenarios_dir: Optional[Path] = None) -> Scenario:
    """Convenience wrapper around ``ScenarioLoader.load``."""

    return ScenarioLoader(scenarios_dir).load(scenario_name)


__all__ = ["KNOWN_CAPABILITIES", "Scenario", "ScenarioLoader", "load_scenario"]
