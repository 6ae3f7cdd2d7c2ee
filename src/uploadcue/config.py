"""Configuration for uploadcue queues."""

from __future__ import annotations

import os
from dataclasses import dataclass

_TRUE = ("1", "true", "yes", "on")


@dataclass
class QueueConfig:
    """Tunable queue behavior.

    Defaults match the mobile client: three attempts per item and stale
    `processing` items returned to `pending` when a queue is opened.
    """

    max_attempts: int = 3
    reset_stale_on_load: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def from_env(cls, prefix: str = "UPLOADCUE_") -> QueueConfig:
        """Build a config from environment variables, e.g. UPLOADCUE_MAX_ATTEMPTS."""
        reset = os.getenv(f"{prefix}RESET_STALE")
        return cls(
            max_attempts=int(os.getenv(f"{prefix}MAX_ATTEMPTS", "3")),
            reset_stale_on_load=True if reset is None else reset.strip().lower() in _TRUE,
        )
