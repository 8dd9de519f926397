"""Key-value persistence interface.

The wallet core never touches storage media directly. Everything it
persists is already encrypted, so a store only moves opaque bytes.
"""

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueStore(ABC):
    """Abstract async key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the value for key, or None if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Insert or replace the value for key."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key if present."""
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """List all stored keys."""
        pass

    async def set_many(self, items: dict[str, bytes]) -> None:
        """Write several values, all or nothing.

        Values are written in iteration order. If a write fails, the keys
        already written are restored to their previous values before the
        error is re-raised.
        """
        previous = {key: await self.get(key) for key in items}
        written: list[str] = []
        try:
            for key, value in items.items():
                await self.set(key, value)
                written.append(key)
        except Exception:
            for key in reversed(written):
                if previous[key] is None:
                    await self.delete(key)
                else:
                    await self.set(key, previous[key])
            raise

    async def clear(self) -> None:
        """Remove every key."""
        for key in await self.keys():
            await self.delete(key)


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, used in tests and for ephemeral sessions."""

    def __init__(self):
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def set_many(self, items: dict[str, bytes]) -> None:
        self._data.update({key: bytes(value) for key, value in items.items()})

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data.keys())
