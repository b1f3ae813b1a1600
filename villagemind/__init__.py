"""
villagemind - autonomous NPC decision engine for real-time simulations.

Agents observe their surroundings every frame, consult an external oracle
(an LLM) for non-trivial choices without ever blocking the frame, validate
the answer against the freshest world state and fall back to wandering near
home whenever anything goes wrong.

The world, the oracle and each agent's capabilities are injected.
"""

__version__ = "0.1.0"

# Main engine
from .orchestrator import DecisionEngine, ConsultationOutcome, UnknownAgentError

# Core records and collaborators
from .agent import Agent
from .world import (
    Capabilities,
    Combatant,
    Conversationalist,
    Gatherer,
    InMemoryWorld,
    Mover,
    NearbyEntities,
    SimpleBody,
    WorldSnapshotProvider,
)
from .perception import Observer, build_observation, significant_change
from .event_log import EventLog
from .config import Config, EngineSettings
from .credentials import CredentialPool
from .oracle import MirascopeTransport, OllamaTransport, OracleClient, OracleTransport
from .cognition import (
    ActionStateMachine,
    DecisionScheduler,
    DecisionContext,
    FallbackPolicy,
    FALLBACK_INTENT,
    PromptLibrary,
    PromptTemplate,
    DEFAULT_PROMPTS,
    parse_response,
    validate_response,
)
from .errors import (
    ConsultationSetupError,
    DecisionEngineError,
    ObservationUnavailable,
    OracleError,
    OracleRateLimited,
    OracleTimeout,
    OracleTransportError,
    ResponseParseError,
    ResponseValidationError,
)

# Core schemas
from .schemas import (
    Action,
    ActionKind,
    AgentState,
    CharacterRecord,
    CharacterSummary,
    ChatReply,
    Cue,
    EventEntry,
    EventKind,
    MoveIntent,
    ObjectRecord,
    ObjectSummary,
    Observation,
    OracleResponse,
    SelfSummary,
)

# Scenario loader helpers
from .scenario import Scenario, ScenarioLoader, load_scenario

__all__ = [
    # Main class
    "DecisionEngine",
    "ConsultationOutcome",
    "UnknownAgentError",
    # Records and collaborators
    "Agent",
    "Capabilities",
    "Combatant",
    "Conversationalist",
    "Gatherer",
    "InMemoryWorld",
    "Mover",
    "NearbyEntities",
    "SimpleBody",
    "WorldSnapshotProvider",
    "Observer",
    "build_observation",
    "significant_change",
    "EventLog",
    "Config",
    "EngineSettings",
    "CredentialPool",
    "MirascopeTransport",
    "OllamaTransport",
    "OracleClient",
    "OracleTransport",
    # Cognition
    "ActionStateMachine",
    "DecisionScheduler",
    "DecisionContext",
    "FallbackPolicy",
    "FALLBACK_INTENT",
    "PromptLibrary",
    "PromptTemplate",
    "DEFAULT_PROMPTS",
    "parse_response",
    "validate_response",
    # Errors
    "ConsultationSetupError",
    "DecisionEngineError",
    "ObservationUnavailable",
    "OracleError",
    "OracleRateLimited",
    "OracleTimeout",
    "OracleTransportError",
    "ResponseParseError",
    "ResponseValidationError",
    # Schemas
    "Action",
    "ActionKind",
    "AgentState",
    "CharacterRecord",
    "CharacterSummary",
    "ChatReply",
    "Cue",
    "EventEntry",
    "EventKind",
    "MoveIntent",
    "ObjectRecord",
    "ObjectSummary",
    "Observation",
    "OracleResponse",
    "SelfSummary",
    # Scenario helpers
    "Scenario",
    "ScenarioLoader",
    "load_scenario",
]
