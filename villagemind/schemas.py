"""
Pydantic schemas for the villagemind decision engine.

All value snapshots exchanged between the engine's stages are defined here.

Design Philosophy:
- Observations are frozen snapshots (safe to keep as the diff baseline)
- The oracle wire payload is lenient on optional fields, strict on shape
- Actions are transient: they drive one transition and are discarded
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# Positions are (x, y, z) with y up; planar math ignores y.
Vec3 = Tuple[float, float, float]


# ============================================================================
# Enumerations
# ============================================================================


class AgentState(str, Enum):
    """Authoritative per-agent behaviour state."""

    IDLE = "idle"
    ROAMING = "roaming"
    MOVING_TO_TARGET = "movingToTarget"
    MOVING_TO_RESOURCE = "movingToResource"
    GATHERING = "gathering"
    ATTACKING = "attacking"
    CHATTING = "chatting"
    DEAD = "dead"


class ActionKind(str, Enum):
    """Actions the oracle is allowed to propose."""

    IDLE = "idle"
    ROAM = "roam"
    GATHER = "gather"
    MOVE_TO = "moveTo"
    ATTACK = "attack"
    HEAL = "heal"
    CHAT = "chat"


# Kinds that must carry a character reference / an object reference.
CHARACTER_ACTIONS = frozenset(
    {ActionKind.MOVE_TO, ActionKind.ATTACK, ActionKind.HEAL, ActionKind.CHAT}
)
OBJECT_ACTIONS = frozenset({ActionKind.GATHER})


class Cue(str, Enum):
    """Discrete animation/behaviour cues sent to the movement driver."""

    GATHER = "gather"
    ATTACK = "attack"
    CHAT_BEGIN = "chat-begin"


class EventKind(str, Enum):
    """Structured outcome events recorded in event logs."""

    DECISION = "decision"
    FALLBACK = "fallback"
    ORACLE_ERROR = "oracle_error"
    OBSERVATION_UNAVAILABLE = "observation_unavailable"
    GATHER_COMPLETE = "gather_complete"
    GATHER_FAIL = "gather_fail"
    ATTACK = "attack"
    HEAL = "heal"
    CHAT = "chat"
    CHAT_ERROR = "chat_error"
    EXHAUSTED = "exhausted"
    DIED = "died"
    ENGINE_ERROR = "engine_error"


# ============================================================================
# Observation Schemas
# ============================================================================


class SelfSummary(BaseModel):
    """What the agent knows about itself at observation time."""

    model_config = ConfigDict(frozen=True)

    id: str
    position: Vec3
    health: float
    max_health: float = 100.0
    is_dead: bool = False
    current_action: str = AgentState.IDLE.value
    # False when the world no longer knows this character (suspended agent).
    present: bool = True


class CharacterSummary(BaseModel):
    """Another character within perception radius."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    position: Vec3
    health: float
    is_dead: bool = False
    current_action: str = "unknown"


class ObjectSummary(BaseModel):
    """An interactable world object within perception radius."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str = "interactable_object"
    position: Vec3
    is_interactable: bool = True
    resource: Optional[str] = None


class Observation(BaseModel):
    """Immutable snapshot of an agent's surroundings at one tick.

    Only the current and previous observations are retained per agent, and
    only for change detection and validation.
    """

    model_config = ConfigDict(frozen=True)

    tick: int = 0
    self_summary: SelfSummary
    nearby_characters: Tuple[CharacterSummary, ...] = ()
    nearby_objects: Tuple[ObjectSummary, ...] = ()

    def find_character(self, character_id: str) -> Optional[CharacterSummary]:
        for summary in self.nearby_characters:
            if summary.id == character_id:
                return summary
        return None

    def find_object(self, object_id: str) -> Optional[ObjectSummary]:
        for summary in self.nearby_objects:
            if summary.id == object_id:
                return summary
        return None


# ============================================================================
# Oracle / Action Schemas
# ============================================================================


class OracleResponse(BaseModel):
    """Structured payload expected back from the oracle.

    ``action`` stays a plain string here: unknown kinds are a validation
    rejection, not a parse failure.
    """

    action: str = Field(..., description="One of idle|roam|gather|moveTo|attack|heal|chat")
    object_id: Optional[str] = Field(None, description="Object id when gathering")
    target_id: Optional[str] = Field(None, description="Character id when targeting")
    message: Optional[str] = Field(None, description="Line to say when chatting")
    intent: str = Field(..., description="Short rationale shown above the agent")


class ChatReply(BaseModel):
    """Reply line an addressed character sends back during a conversation."""

    response: str = Field(..., description="One or two sentences said back to the speaker")


class Action(BaseModel):
    """Validated decision, ready to be applied to an agent."""

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    object_id: Optional[str] = None
    target_id: Optional[str] = None
    message: Optional[str] = None
    rationale: str = ""


# ============================================================================
# Engine Output Schemas
# ============================================================================


class MoveIntent(BaseModel):
    """Per-tick movement request consumed by the movement integrator."""

    forward: float = 0.0
    strafe: float = 0.0
    facing: Optional[Vec3] = None
    cue: Optional[Cue] = None

    @property
    def is_still(self) -> bool:
        return self.forward == 0.0 and self.strafe == 0.0


class EventEntry(BaseModel):
    """One line in an event log."""

    model_config = ConfigDict(frozen=True)

    tick: int = 0
    actor_id: Optional[str] = None
    kind: EventKind
    message: str
    target_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# World Record Schemas (reference world + scenario files)
# ============================================================================


class CharacterRecord(BaseModel):
    """Live character as exposed by a world snapshot provider."""

    id: str
    name: Optional[str] = None
    position: Vec3 = (0.0, 0.0, 0.0)
    health: float = 100.0
    max_health: float = 100.0
    is_dead: bool = False
    removed: bool = False
    action_label: str = "unknown"
    tags: List[str] = Field(default_factory=list)

    def summary(self) -> CharacterSummary:
        return CharacterSummary(
            id=self.id,
            name=self.name,
            position=self.position,
            health=self.health,
            is_dead=self.is_dead,
            current_action="dead" if self.is_dead else self.action_label,
        )


class ObjectRecord(BaseModel):
    """Live interactable object (resource node, chest, door...)."""

    id: str
    type: str = "interactable_object"
    position: Vec3 = (0.0, 0.0, 0.0)
    visible: bool = True
    is_interactable: bool = True
    removed: bool = False
    resource: Optional[str] = None
    gather_time: Optional[float] = None
    respawn_time: Optional[float] = None
    is_depletable: bool = False

    def summary(self) -> ObjectSummary:
        return ObjectSummary(
            id=self.id,
            type=self.type,
            position=self.position,
            is_interactable=self.is_interactable,
            resource=self.resource,
        )
