# src/beacon/storage/protocols.py
"""Protocol for the durable key-value store behind persisted pipeline state."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class DurableStore(Protocol):
    """Byte-oriented key-value store.

    Implementations must be safe to call from sink and queue worker
    threads. Writes are durable once set() returns.

    Error handling:
        Methods may raise on backend failure. Callers inside tracking paths
        catch and log; nothing here is allowed to reach host application code.
    """

    def get(self, key: str) -> bytes | None:
        """Return the stored bytes, or None if the key is absent."""
        ...

    def set(self, key: str, value: bytes) -> None:
        """Store value under key, replacing any previous value."""
        ...

    def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""
        ...

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix.

        Returns:
            Number of keys removed
        """
        ...

    def keys(self, prefix: str = "") -> list[str]:
        """Sorted keys starting with prefix."""
        ...

    def close(self) -> None:
        """Release backend resources. Idempotent."""
        ...
