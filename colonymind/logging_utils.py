"""Logging utilities for colonymind.

Provides color-coded output to distinguish routine bookkeeping, throttling
decisions and errors, plus a tick-based rate limiter so diagnostics show up
periodically instead of on every tick.
"""

import os
from enum import Enum
from typing import Callable, Dict, Optional

from .config import Config


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic bookkeeping (cache, planner)
    YELLOW = "\033[93m"    # Throttling / recovery decisions
    RED = "\033[91m"       # Errors and fallbacks
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

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
        Colorized text if COLONYMIND_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("COLONYMIND_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def log_deterministic(message: str) -> None:
    """Log a deterministic bookkeeping operation (blue)."""
    print(colored(message, Color.BLUE))


def log_throttle(message: str) -> None:
    """Log a budget throttling or recovery decision (yellow)."""
    print(colored(message, Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or fallback (red)."""
    print(colored(message, Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(message, Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(message, Color.CYAN))


# Markers for operation types (color-blind accessible)
TAG_DETERMINISTIC = "[•]"  # Deterministic operation
TAG_THROTTLE = "[~]"       # Budget gating / recovery
TAG_ERROR = "[!]"          # Error/fallback
TAG_SUCCESS = "[✓]"        # Success
TAG_INFO = "[i]"           # Information


class DiagnosticLog:
    """Tick-based rate limiter for keyed diagnostic lines.

    A message with a given key is emitted at most once every ``interval``
    ticks; suppressed calls return ``False``. The last-emitted ticks are plain
    ints keyed by string so the limiter state survives a host snapshot.
    """

    def __init__(self, interval: Optional[int] = None, last_emitted: Optional[Dict[str, int]] = None):
        self.interval = Config.DIAGNOSTIC_INTERVAL if interval is None else interval
        self.last_emitted: Dict[str, int] = dict(last_emitted or {})

    def emit(
        self,
        key: str,
        message: str,
        *,
        tick: int,
        sink: Callable[[str], None] = log_info,
    ) -> bool:
        """Print ``message`` via ``sink`` unless ``key`` fired within the interval."""

        last = self.last_emitted.get(key)
        if last is not None and tick - last < self.interval:
            return False
        self.last_emitted[key] = tick
        sink(message)
        return True

    def reset(self) -> None:
        self.last_emitted.clear()
