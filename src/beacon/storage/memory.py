# src/beacon/storage/memory.py
"""In-memory DurableStore for tests and ephemeral hosts."""

import threading


class InMemoryStore:
    """Dict-backed store. Contents live only as long as the instance.

    Example:
        store = InMemoryStore()
        store.set("analytics:consent", b"{}")
        assert store.get("analytics:consent") == b"{}"
    """

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._data if key.startswith(prefix)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(key for key in self._data if key.startswith(prefix))

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
