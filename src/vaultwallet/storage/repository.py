"""Key-value store backed by the SQL database."""

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultwallet.storage.base import KeyValueStore
from vaultwallet.storage.database import get_session_factory
from vaultwallet.storage.models import StoredSecret

logger = logging.getLogger(__name__)


class SqlKeyValueStore(KeyValueStore):
    """Persists encrypted values in the ``stored_secrets`` table.

    Each call runs in its own session and commits on success.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory or get_session_factory()

    async def get(self, key: str) -> Optional[bytes]:
        async with self._session_factory() as session:
            row = await session.get(StoredSecret, key)
            return bytes(row.value) if row is not None else None

    async def set(self, key: str, value: bytes) -> None:
        async with self._session_factory() as session:
            try:
                row = await session.get(StoredSecret, key)
                if row is None:
                    session.add(StoredSecret(key=key, value=bytes(value)))
                else:
                    row.value = bytes(value)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        logger.debug(f"Stored {len(value)} bytes under {key}")

    async def set_many(self, items: dict[str, bytes]) -> None:
        """Write every value in one transaction."""
        async with self._session_factory() as session:
            try:
                for key, value in items.items():
                    row = await session.get(StoredSecret, key)
                    if row is None:
                        session.add(StoredSecret(key=key, value=bytes(value)))
                    else:
                        row.value = bytes(value)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        logger.debug(f"Stored {len(items)} values in one transaction")

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(StoredSecret).where(StoredSecret.key == key))
            await session.commit()

    async def keys(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(StoredSecret.key).order_by(StoredSecret.key))
            return list(result.scalars().all())

    async def clear(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(StoredSecret))
            await session.commit()
        logger.info("Cleared all stored secrets")
