"""Logging utilities for Rapport.

Provides color-coded console output so deterministic bookkeeping (ledger
writes, recall scoring) is visually distinct from text-generation calls and
from degraded paths (skipped flag writes, dropped replies).
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    BLUE = "\033[94m"      # Deterministic operations (ledger, recall, cascade)
    YELLOW = "\033[93m"    # Text generation calls
    RED = "\033[91m"       # Errors, skipped mutations, fallbacks
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    BOLD = "\033[1m"
    RESET = "\033[0m"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[AI]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes unless RAPPORT_NO_COLOR is set."""
    if os.getenv("RAPPORT_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def _quiet() -> bool:
    return os.getenv("RAPPORT_QUIET", "").lower() in ("1", "true", "yes")


def debug_enabled(flag: str) -> bool:
    """Return True when a DEBUG_* environment toggle is switched on."""
    return os.getenv(flag, "").lower() in ("1", "true", "yes")


def log_deterministic(message: str) -> None:
    """Log a deterministic operation (blue)."""
    if not _quiet():
        print(colored(f"{LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log a text generation operation (yellow)."""
    if not _quiet():
        print(colored(f"{LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or degraded path (red). Never silenced."""
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    if not _quiet():
        print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    if not _quiet():
        print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))
