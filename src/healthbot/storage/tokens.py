"""Token store — one :class:`TokenRecord` per provider."""

from __future__ import annotations

from datetime import datetime

import structlog
from pydantic import ValidationError

from healthbot.models import TokenRecord, utcnow
from healthbot.storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)

_PREFIX = "device_token:"


class TokenStore:
    """Persist and look up provider tokens.

    A record is *valid* while it exists and its ``expires_at`` is absent
    or in the future.  Nothing here refreshes an expired token: the device
    reads as disconnected until the user authorizes again (or an explicit
    refresh is requested through the integration service).
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def put(self, device_id: str, record: TokenRecord) -> None:
        await self._kv.put(_PREFIX + device_id, record.model_dump_json())
        logger.info(
            "token_store.saved",
            device=device_id,
            expires_at=record.expires_at.isoformat() if record.expires_at else None,
            has_refresh_token=bool(record.refresh_token),
        )

    async def get(self, device_id: str) -> TokenRecord | None:
        raw = await self._kv.get(_PREFIX + device_id)
        if raw is None:
            return None
        try:
            return TokenRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("token_store.corrupt_record", device=device_id)
            return None

    async def is_valid(self, device_id: str, now: datetime | None = None) -> bool:
        record = await self.get(device_id)
        return record is not None and not record.is_expired(now or utcnow())

    async def clear(self, device_id: str) -> bool:
        removed = await self._kv.delete(_PREFIX + device_id)
        if removed:
            logger.info("token_store.cleared", device=device_id)
        return removed

    async def connected_providers(self) -> list[str]:
        """Device ids that currently hold a valid token."""
        result = []
        for key in await self._kv.keys(_PREFIX):
            device_id = key[len(_PREFIX):]
            if await self.is_valid(device_id):
                result.append(device_id)
        return result
