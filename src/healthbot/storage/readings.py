"""Local health-data collection: deduplicated and capped."""

from __future__ import annotations

import json
from typing import Iterable

import structlog
from pydantic import TypeAdapter, ValidationError

from healthbot.models import HealthReading, ReadingType
from healthbot.storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)

_KEY = "health_data"
_READINGS = TypeAdapter(list[HealthReading])


class HealthDataStore:
    """All readings in one document, keyed uniquely by (source, timestamp, type).

    Writes are last-writer-wins; a single process owns the collection.
    """

    def __init__(self, kv: KeyValueStore, max_records: int = 1000) -> None:
        self._kv = kv
        self._max_records = max_records

    # ── Write ─────────────────────────────────────────────────

    async def store_health_data(self, readings: Iterable[HealthReading]) -> int:
        """Merge *readings* into the collection.

        Existing entries win over incoming duplicates; only the newest
        ``max_records`` entries (by insertion order) are kept.  Returns the
        number of readings that were actually added.
        """
        existing = await self.get_all()
        seen = {r.key() for r in existing}
        merged = list(existing)
        added = 0
        for reading in readings:
            key = reading.key()
            if key in seen:
                continue
            seen.add(key)
            merged.append(reading)
            added += 1

        trimmed = merged[-self._max_records:] if self._max_records > 0 else []
        await self._kv.put(_KEY, _READINGS.dump_json(trimmed).decode())
        logger.debug("health_data.stored", added=added, total=len(trimmed))
        return added

    async def clear(self) -> None:
        await self._kv.delete(_KEY)

    # ── Read ──────────────────────────────────────────────────

    async def get_all(self) -> list[HealthReading]:
        raw = await self._kv.get(_KEY)
        if not raw:
            return []
        try:
            return _READINGS.validate_json(raw)
        except (ValidationError, json.JSONDecodeError):
            logger.warning("health_data.corrupt_collection")
            return []

    async def get_by_type(self, reading_type: ReadingType) -> list[HealthReading]:
        return [r for r in await self.get_all() if r.type == reading_type]

    async def get_latest(self, reading_type: ReadingType) -> HealthReading | None:
        readings = await self.get_by_type(reading_type)
        if not readings:
            return None
        return max(readings, key=lambda r: r.timestamp)
