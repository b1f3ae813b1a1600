"""
villagemind configuration

Loads configuration from environment variables with sensible defaults.
Tunables that shape agent behaviour live on ``EngineSettings`` so they can be
injected per engine (tests build their own instances).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


class Config:
    """Application configuration loaded from environment variables."""

    # Oracle provider configuration
    ORACLE_PROVIDER: str = os.getenv("ORACLE_PROVIDER", "openai")
    ORACLE_MODEL: str = os.getenv("ORACLE_MODEL", "gpt-4o-mini")

    # Primary credential plus an optional alternate used on rate limits
    ORACLE_API_KEY: str | None = os.getenv("ORACLE_API_KEY")
    ORACLE_API_KEY_ALT: str | None = os.getenv("ORACLE_API_KEY_ALT")

    # OpenAI-compatible endpoints (vLLM, LM Studio) or the Ollama base URL
    ORACLE_BASE_URL: str | None = os.getenv("ORACLE_BASE_URL")

    ORACLE_TIMEOUT_SECONDS: float = _float_env("ORACLE_TIMEOUT_SECONDS", 15.0)

    # Decision cadence
    DECISION_COOLDOWN_SECONDS: float = _float_env("DECISION_COOLDOWN_SECONDS", 5.0)
    DECISION_COOLDOWN_JITTER_SECONDS: float = _float_env("DECISION_COOLDOWN_JITTER_SECONDS", 5.0)
    DECISION_MIN_INTERVAL_SECONDS: float = _float_env("DECISION_MIN_INTERVAL_SECONDS", 10.0)

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    SCENARIOS_DIR: Path = PROJECT_ROOT / "examples" / "scenarios"

    @classmethod
    def api_keys(cls) -> list[str]:
        """Configured credentials in rotation order, blanks removed."""

        keys = [cls.ORACLE_API_KEY, cls.ORACLE_API_KEY_ALT]
        return [key for key in keys if key]

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.ORACLE_PROVIDER == "ollama":
            return

        if not cls.ORACLE_API_KEY and not cls.ORACLE_BASE_URL:
            raise ValueError(
                f"ORACLE_API_KEY is required when using the '{cls.ORACLE_PROVIDER}' provider. "
                "For local OpenAI-compatible servers, set ORACLE_BASE_URL instead."
            )

        if cls.ORACLE_TIMEOUT_SECONDS <= 0:
            raise ValueError("ORACLE_TIMEOUT_SECONDS must be positive")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "villagemind configuration:",
            f"  Oracle Provider: {cls.ORACLE_PROVIDER}",
            f"  Oracle Model: {cls.ORACLE_MODEL}",
            f"  Credentials: {len(cls.api_keys())}",
            f"  Oracle Timeout: {cls.ORACLE_TIMEOUT_SECONDS:g}s",
            f"  Cooldown: {cls.DECISION_COOLDOWN_SECONDS:g}s "
            f"(+{cls.DECISION_COOLDOWN_JITTER_SECONDS:g}s jitter)",
            f"  Min Interval: {cls.DECISION_MIN_INTERVAL_SECONDS:g}s",
            f"  Log Level: {cls.LOG_LEVEL}",
        ]
        return "\n".join(lines)


@dataclass(frozen=True)
class EngineSettings:
    """Behaviour tunables for the decision engine.

    Distances are in world units, durations in seconds. Defaults mirror the
    values the village game shipped with.
    """

    cooldown_seconds: float = 5.0
    cooldown_jitter_seconds: float = 5.0
    min_request_interval_seconds: float = 10.0
    oracle_timeout_seconds: float = 15.0

    health_change_threshold: float = 10.0

    interaction_distance: float = 3.0
    roam_stop_distance: float = 0.5

    default_gather_seconds: float = 2.0
    default_respawn_seconds: float = 15.0

    max_context_characters: int = 5
    max_context_objects: int = 5
    context_history_entries: int = 5

    event_log_size: int = 50

    # Addressed agents ask the oracle for a reply; both sides re-decide after this long.
    chat_replies: bool = True
    chat_followup_seconds: float = 7.0

    # States in which an elapsed cooldown may interrupt the current behaviour.
    interruptible_states: frozenset[str] = field(
        default_factory=lambda: frozenset({"idle", "roaming", "chatting"})
    )

    @property
    def target_stop_distance(self) -> float:
        """Stop slightly inside interaction range when approaching a target."""

        return self.interaction_distance * 0.9

    @classmethod
    def from_config(cls) -> "EngineSettings":
        return cls(
            cooldown_seconds=Config.DECISION_COOLDOWN_SECONDS,
            cooldown_jitter_seconds=Config.DECISION_COOLDOWN_JITTER_SECONDS,
            min_request_interval_seconds=Config.DECISION_MIN_INTERVAL_SECONDS,
            oracle_timeout_seconds=Config.ORACLE_TIMEOUT_SECONDS,
        )
