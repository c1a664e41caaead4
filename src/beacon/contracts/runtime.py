# src/beacon/contracts/runtime.py
"""Runtime configuration built from validated settings.

Settings models describe what the user wrote (milliseconds, optional
fields); runtime configs hold what components consume (seconds, all
fields resolved). Conversion happens once, in from_settings().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from beacon.core.config import QueueSettings


@dataclass(frozen=True, slots=True)
class RuntimeQueueConfig:
    """Runtime configuration for a DurableQueue.

    Field Origins:
        - max_size: QueueSettings.max_size (direct mapping)
        - max_retries: QueueSettings.max_retries (direct mapping)
        - retry_delay: QueueSettings.retry_delay_ms (ms -> seconds)
        - process_interval: QueueSettings.process_interval_ms (ms -> seconds)

    Note: max_retries counts failed attempts. max_retries=3 means an entry
    is dropped on its third failure.
    """

    max_size: int
    max_retries: int
    retry_delay: float  # seconds
    process_interval: float  # seconds

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError("max_size must be >= 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        if self.process_interval <= 0:
            raise ValueError("process_interval must be > 0")

    @classmethod
    def default(cls) -> RuntimeQueueConfig:
        return cls(max_size=1000, max_retries=3, retry_delay=5.0, process_interval=60.0)

    @classmethod
    def from_settings(cls, settings: QueueSettings) -> RuntimeQueueConfig:
        """Factory from QueueSettings config model.

        Args:
            settings: Validated Pydantic settings model

        Returns:
            RuntimeQueueConfig with intervals converted to seconds
        """
        return cls(
            max_size=settings.max_size,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay_ms / 1000,
            process_interval=settings.process_interval_ms / 1000,
        )
