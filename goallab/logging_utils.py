"""Logging utilities for goallab simulations.

Provides color-coded output to distinguish deterministic stages from
seeded stochastic choices (sampling, noise).
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic stages (perception, enrichment)
    YELLOW = "\033[93m"    # Seeded stochastic choices (sampling, lookahead noise)
    RED = "\033[91m"       # Errors and failed stages
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata
    MAGENTA = "\033[95m"   # Structural warnings

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if GOALLAB_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("GOALLAB_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def env_flag(name: str) -> bool:
    """True when an environment debug flag is set to a truthy value."""
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def log_deterministic(message: str) -> None:
    """Log a deterministic operation (blue)."""
    print(colored(message, Color.BLUE))


def log_stochastic(message: str) -> None:
    """Log a seeded stochastic operation (yellow)."""
    print(colored(message, Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or failed stage (red)."""
    print(colored(message, Color.RED))


def log_warning(message: str) -> None:
    """Log a structural warning (magenta)."""
    print(colored(message, Color.MAGENTA))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(message, Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(message, Color.CYAN))


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"  # Deterministic operation
LOG_TAG_STOCHASTIC = "[~]"     # Seeded stochastic choice
LOG_TAG_ERROR = "[!]"          # Error/failed stage
LOG_TAG_WARNING = "[?]"        # Structural warning
LOG_TAG_SUCCESS = "[✓]"        # Success
LOG_TAG_INFO = "[i]"           # Information
