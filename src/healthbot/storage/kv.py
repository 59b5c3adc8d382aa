"""Key-value persistence port and its two backends.

Tokens, pending OAuth sessions, Bluetooth connection markers and the
reading collection are all stored as JSON strings under a namespaced key.
The in-memory store is the test double; :class:`SqlKeyValueStore` keeps
the same documents in a single SQLAlchemy table.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog
from sqlalchemy import delete, select

from healthbot.config import Settings, get_settings
from healthbot.storage.database import KeyValueRow, get_session_factory

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Contract every persistence backend implements."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value or ``None``."""

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        """Insert or overwrite *key* (last writer wins)."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove *key*; return whether it existed."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with *prefix*."""

    async def close(self) -> None:
        """Release any resources held by the store."""


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqlKeyValueStore(KeyValueStore):
    """Key-value documents in the ``kv_entries`` table."""

    def __init__(self, database_url: str | None = None) -> None:
        self._factory = get_session_factory(database_url)

    async def get(self, key: str) -> str | None:
        async with self._factory() as session:
            row = await session.get(KeyValueRow, key)
            return row.value if row is not None else None

    async def put(self, key: str, value: str) -> None:
        async with self._factory() as session:
            row = await session.get(KeyValueRow, key)
            if row is None:
                session.add(KeyValueRow(key=key, value=value))
            else:
                row.value = value
            await session.commit()

    async def delete(self, key: str) -> bool:
        async with self._factory() as session:
            result = await session.execute(delete(KeyValueRow).where(KeyValueRow.key == key))
            await session.commit()
            return (result.rowcount or 0) > 0

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._factory() as session:
            stmt = select(KeyValueRow.key).where(KeyValueRow.key.startswith(prefix, autoescape=True))
            result = await session.execute(stmt.order_by(KeyValueRow.key))
            return list(result.scalars().all())


def create_store(settings: Settings | None = None) -> KeyValueStore:
    """Instantiate the backend selected by ``storage_backend``."""
    settings = settings or get_settings()
    if settings.storage_backend == "memory":
        store: KeyValueStore = MemoryKeyValueStore()
    else:
        store = SqlKeyValueStore(settings.database_url)
    logger.info("storage.backend_selected", backend=settings.storage_backend)
    return store
