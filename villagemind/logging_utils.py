"""Logging utilities for villagemind.

Provides color-coded console output to distinguish deterministic engine steps
from oracle calls and failures. ``Config.LOG_LEVEL`` (DEBUG, INFO, WARNING,
ERROR) sets how much is printed: failures are ERROR, engine steps are DEBUG,
everything else is INFO.
"""

import os
from enum import Enum

from .config import Config


class Color(Enum):
    """ANSI color codes for terminal output."""

    BLUE = "\033[94m"      # Deterministic steps (observation, state machine)
    YELLOW = "\033[93m"    # Oracle calls
    RED = "\033[91m"       # Failures and fallbacks
    GREEN = "\033[92m"     # Applied decisions
    CYAN = "\033[96m"      # Info/metadata

    BOLD = "\033[1m"
    RESET = "\033[0m"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_ORACLE = "[AI]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if VILLAGEMIND_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("VILLAGEMIND_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def env_flag(name: str) -> bool:
    """Return True when an opt-in debug flag is set."""

    return os.getenv(name, "").lower() in ("1", "true", "yes")


def enabled(level: str) -> bool:
    """Whether messages at ``level`` pass the configured ``LOG_LEVEL``."""

    threshold = _LEVELS.get(str(Config.LOG_LEVEL).upper(), _LEVELS["INFO"])
    return _LEVELS[level] >= threshold


def log_deterministic(message: str) -> None:
    """Log a deterministic engine step (blue)."""
    if not enabled("DEBUG"):
        return
    print(colored(f"{LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_oracle(message: str) -> None:
    """Log an oracle operation (yellow)."""
    if not enabled("INFO"):
        return
    print(colored(f"{LOG_TAG_ORACLE} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log a failure or fallback (red)."""
    if not enabled("ERROR"):
        return
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log an applied decision (green)."""
    if not enabled("INFO"):
        return
    print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    if not enabled("INFO"):
        return
    print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))
