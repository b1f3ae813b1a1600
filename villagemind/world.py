"""
Collaborator interfaces consumed by the decision engine, plus a reference
in-memory world.

The engine never owns the world. It reads snapshots through
``WorldSnapshotProvider`` and acts only through per-agent capabilities:

- ``Mover``: position, facing, one-shot animation cues
- ``Combatant``: attack requests and heals
- ``Conversationalist``: speech lines
- ``Gatherer``: inventory

Concrete kinds (villager, guard, animal...) implement whichever capabilities
they support; the state machine dispatches through the capability objects and
never through the concrete type.

``InMemoryWorld`` and ``SimpleBody`` are the default implementations used by
the tests, the scenario loader and the examples. A game engine binding would
supply its own.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable

from .movement import distance_3d, planar_offset
from .schemas import ActionKind, CharacterRecord, Cue, MoveIntent, ObjectRecord, Vec3


# ============================================================================
# Collaborator Protocols
# ============================================================================


@dataclass
class NearbyEntities:
    """Raw result of a proximity query."""

    characters: List[CharacterRecord] = field(default_factory=list)
    objects: List[ObjectRecord] = field(default_factory=list)


class WorldSnapshotProvider(Protocol):
    """Live world state, queried on demand by the observer and state machine."""

    def nearby(self, position: Vec3, radius: float) -> NearbyEntities:
        ...

    def get_character(self, character_id: str) -> Optional[CharacterRecord]:
        ...

    def get_object(self, object_id: str) -> Optional[ObjectRecord]:
        ...

    def terrain_height(self, x: float, z: float) -> float:
        ...

    def deplete_object(self, object_id: str) -> None:
        """Hide a depleted object; the world schedules and owns its respawn."""
        ...


@runtime_checkable
class Mover(Protocol):
    def position(self) -> Vec3:
        ...

    def face(self, point: Vec3) -> None:
        ...

    def play_cue(self, cue: Cue) -> None:
        ...


@runtime_checkable
class Combatant(Protocol):
    def request_attack(self, target_id: str) -> None:
        ...

    def attack_in_progress(self) -> bool:
        ...

    def heal(self, target_id: str) -> bool:
        ...


@runtime_checkable
class Conversationalist(Protocol):
    def say(self, message: str, target_id: Optional[str] = None) -> None:
        ...


@runtime_checkable
class Gatherer(Protocol):
    def add_item(self, resource: str, count: int = 1) -> bool:
        """Return False when the inventory cannot take the item."""
        ...

    def inventory_summary(self) -> str:
        ...


@dataclass
class Capabilities:
    """Capability bundle attached to an agent. Only ``mover`` is required."""

    mover: Mover
    combatant: Optional[Combatant] = None
    conversationalist: Optional[Conversationalist] = None
    gatherer: Optional[Gatherer] = None

    def supports(self, kind: ActionKind) -> bool:
        """Whether this agent can carry out an action of ``kind``."""

        if kind in (ActionKind.ATTACK, ActionKind.HEAL):
            return self.combatant is not None
        if kind == ActionKind.CHAT:
            return self.conversationalist is not None
        if kind == ActionKind.GATHER:
            return self.gatherer is not None
        return True

    @classmethod
    def from_body(cls, body: object) -> "Capabilities":
        """Build a bundle from one object implementing several capabilities."""

        if not isinstance(body, Mover):
            raise TypeError(f"{type(body).__name__} does not implement Mover")
        return cls(
            mover=body,
            combatant=body if isinstance(body, Combatant) else None,
            conversationalist=body if isinstance(body, Conversationalist) else None,
            gatherer=body if isinstance(body, Gatherer) else None,
        )


# ============================================================================
# Reference World
# ============================================================================


TerrainFn = Callable[[float, float], float]


def flat_terrain(x: float, z: float) -> float:
    return 0.0


@dataclass
class _PendingRespawn:
    object_id: str
    remaining: float


class InMemoryWorld:
    """Dictionary-backed world used by tests, scenarios and examples."""

    def __init__(
        self,
        *,
        terrain: TerrainFn = flat_terrain,
        default_respawn_seconds: float = 15.0,
    ) -> None:
        self.characters: Dict[str, CharacterRecord] = {}
        self.objects: Dict[str, ObjectRecord] = {}
        self.terrain = terrain
        self.default_respawn_seconds = default_respawn_seconds
        self._respawns: List[_PendingRespawn] = []

    # --- population -------------------------------------------------------

    def add_character(self, record: CharacterRecord) -> CharacterRecord:
        self.characters[record.id] = record
        return record

    def add_object(self, record: ObjectRecord) -> ObjectRecord:
        self.objects[record.id] = record
        return record

    def remove_character(self, character_id: str) -> None:
        record = self.characters.get(character_id)
        if record is not None:
            record.removed = True

    def remove_object(self, object_id: str) -> None:
        record = self.objects.get(object_id)
        if record is not None:
            record.removed = True

    # --- WorldSnapshotProvider --------------------------------------------

    def nearby(self, position: Vec3, radius: float) -> NearbyEntities:
        result = NearbyEntities()
        for record in self.characters.values():
            if not record.removed and distance_3d(position, record.position) <= radius:
                result.characters.append(record)
        for record in self.objects.values():
            if not record.removed and distance_3d(position, record.position) <= radius:
                result.objects.append(record)
        return result

    def get_character(self, character_id: str) -> Optional[CharacterRecord]:
        record = self.characters.get(character_id)
        if record is None or record.removed:
            return None
        return record

    def get_object(self, object_id: str) -> Optional[ObjectRecord]:
        record = self.objects.get(object_id)
        if record is None or record.removed:
            return None
        return record

    def terrain_height(self, x: float, z: float) -> float:
        return self.terrain(x, z)

    def deplete_object(self, object_id: str) -> None:
        record = self.get_object(object_id)
        if record is None:
            return
        record.visible = False
        record.is_interactable = False
        respawn = record.respawn_time or self.default_respawn_seconds
        self._respawns.append(_PendingRespawn(object_id=object_id, remaining=respawn))

    # --- simulation helpers -----------------------------------------------

    def apply_damage(self, character_id: str, amount: float) -> None:
        record = self.get_character(character_id)
        if record is None or record.is_dead:
            return
        record.health = max(0.0, record.health - amount)
        if record.health <= 0:
            record.is_dead = True

    def advance(self, dt: float) -> None:
        """Count down respawn timers and restore objects that are due."""

        still_pending: List[_PendingRespawn] = []
        for pending in self._respawns:
            pending.remaining -= dt
            if pending.remaining > 0:
                still_pending.append(pending)
                continue
            record = self.objects.get(pending.object_id)
            if record is not None and not record.removed:
                record.visible = True
                record.is_interactable = True
        self._respawns = still_pending


class SimpleBody:
    """Kinematic body implementing every capability against ``InMemoryWorld``.

    ``integrate`` plays the role of the external movement integrator and
    ``update`` advances the attack timer.
    """

    def __init__(
        self,
        world: InMemoryWorld,
        character_id: str,
        *,
        speed: float = 3.0,
        attack_damage: float = 10.0,
        attack_seconds: float = 1.0,
        heal_amount: float = 20.0,
        inventory_slots: int = 9,
        max_stack: int = 64,
    ) -> None:
        self.world = world
        self.character_id = character_id
        self.speed = speed
        self.attack_damage = attack_damage
        self.attack_seconds = attack_seconds
        self.heal_amount = heal_amount
        self.inventory_slots = inventory_slots
        self.max_stack = max_stack
        self.inventory: Dict[str, int] = {}
        self.facing: Optional[Vec3] = None
        self.spoken: List[str] = []
        self.attacks_requested: List[str] = []
        self.cues: List[Cue] = []
        self._attack_remaining = 0.0

    @property
    def record(self) -> CharacterRecord:
        record = self.world.characters.get(self.character_id)
        if record is None:
            raise KeyError(f"Character {self.character_id} not found in world")
        return record

    # Mover
    def position(self) -> Vec3:
        return self.record.position

    def face(self, point: Vec3) -> None:
        self.facing = point

    def play_cue(self, cue: Cue) -> None:
        self.cues.append(cue)

    # Combatant
    def request_attack(self, target_id: str) -> None:
        self.attacks_requested.append(target_id)
        self._attack_remaining = self.attack_seconds
        self.world.apply_damage(target_id, self.attack_damage)

    def attack_in_progress(self) -> bool:
        return self._attack_remaining > 0.0

    def heal(self, target_id: str) -> bool:
        target = self.world.get_character(target_id)
        if target is None or target.is_dead or target.health >= target.max_health:
            return False
        target.health = min(target.max_health, target.health + self.heal_amount)
        return True

    # Conversationalist
    def say(self, message: str, target_id: Optional[str] = None) -> None:
        self.spoken.append(message)

    # Gatherer
    def add_item(self, resource: str, count: int = 1) -> bool:
        updated = dict(self.inventory)
        updated[resource] = updated.get(resource, 0) + count
        if self._slots_used(updated) > self.inventory_slots:
            return False
        self.inventory = updated
        return True

    def _slots_used(self, inventory: Dict[str, int]) -> int:
        return sum(-(-count // self.max_stack) for count in inventory.values() if count > 0)

    def inventory_summary(self) -> str:
        if not self.inventory:
            return "Empty"
        return ", ".join(f"{name}: {count}" for name, count in sorted(self.inventory.items()))

    # Integration
    def integrate(self, intent: MoveIntent, dt: float) -> None:
        record = self.record
        if intent.facing is not None:
            self.facing = intent.facing
        if intent.forward <= 0 or self.facing is None:
            return
        dx, dz = planar_offset(record.position, self.facing)
        length = math.hypot(dx, dz)
        if length < 1e-6:
            return
        step = self.speed * intent.forward * dt
        x = record.position[0] + dx / length * step
        z = record.position[2] + dz / length * step
        record.position = (x, self.world.terrain_height(x, z), z)

    def update(self, dt: float) -> None:
        self._attack_remaining = max(0.0, self._attack_remaining - dt)
