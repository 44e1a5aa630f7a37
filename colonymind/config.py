"""
Colonymind Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Budget gauge ceiling reported by the host (0..BUDGET_MAX)
    BUDGET_MAX: int = int(os.getenv("COLONYMIND_BUDGET_MAX", "10000"))

    # Budget samples are taken every N ticks to halve monitor overhead
    SAMPLE_EVERY: int = int(os.getenv("COLONYMIND_SAMPLE_EVERY", "2"))

    # Minimum ticks between repeated diagnostic lines with the same key
    DIAGNOSTIC_INTERVAL: int = int(os.getenv("COLONYMIND_DIAGNOSTIC_INTERVAL", "100"))

    # Durable store location for JsonAreaStore
    STATE_DIR: Path = Path(os.getenv("COLONYMIND_STATE_DIR", "colony_state"))

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors for unusable values."""
        if cls.BUDGET_MAX <= 0:
            raise ValueError("COLONYMIND_BUDGET_MAX must be a positive integer")

        if cls.SAMPLE_EVERY < 1:
            raise ValueError("COLONYMIND_SAMPLE_EVERY must be >= 1")

        if cls.DIAGNOSTIC_INTERVAL < 0:
            raise ValueError("COLONYMIND_DIAGNOSTIC_INTERVAL must be >= 0")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Colonymind Configuration:",
            f"  Budget Max: {cls.BUDGET_MAX}",
            f"  Sample Every: {cls.SAMPLE_EVERY} ticks",
            f"  Diagnostic Interval: {cls.DIAGNOSTIC_INTERVAL} ticks",
            f"  State Dir: {cls.STATE_DIR}",
        ]
        return "\n".join(lines)
