"""
SessionStorage - Scoped key/value store for session-lifetime client state.

Features:
- Values live for the lifetime of the process
- Every scope (tab, connection, user session) is isolated by key prefix
- Synchronous API so read-modify-write sequences never yield to the event loop
"""

from typing import Any

from loguru import logger


class SessionStorage:
    """
    Process-lifetime string store shared by every scope.

    Usage:
        storage = SessionStorage()
        tab = storage.scope("tab-1")

        tab.set_item("auth_grace_until", "2024-01-01T00:00:05")
        value = tab.get_item("auth_grace_until")
    """

    def __init__(self, debug: bool = False):
        self._items: dict[str, str] = {}
        self._debug = debug

    def scope(self, name: str) -> "ScopedStorage":
        """Get a view restricted to one scope."""
        return ScopedStorage(self, name)

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value
        self._log(f"SET: {key}")

    def delete(self, key: str) -> bool:
        if key in self._items:
            del self._items[key]
            self._log(f"DELETE: {key}")
            return True
        return False

    def clear(self, prefix: str | None = None) -> int:
        """Remove every key, or only keys under ``prefix``."""
        keys = [k for k in self._items if prefix is None or k.startswith(prefix)]
        for key in keys:
            del self._items[key]
        if keys:
            self._log(f"CLEAR: {len(keys)} entries removed")
        return len(keys)

    def keys(self) -> list[str]:
        return list(self._items.keys())

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[SessionStorage] {message}")


class ScopedStorage:
    """sessionStorage-like view over one scope of a SessionStorage."""

    def __init__(self, backend: SessionStorage, scope: str):
        self._backend = backend
        self._prefix = f"{scope}:"
        self.scope_name = scope

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get_item(self, key: str) -> str | None:
        return self._backend.get(self._key(key))

    def set_item(self, key: str, value: str) -> None:
        self._backend.set(self._key(key), value)

    def remove_item(self, key: str) -> bool:
        return self._backend.delete(self._key(key))

    def clear(self) -> int:
        return self._backend.clear(self._prefix)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope_name,
            "keys": [
                k[len(self._prefix) :]
                for k in self._backend.keys()
                if k.startswith(self._prefix)
            ],
        }
