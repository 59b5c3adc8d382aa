"""Pending OAuth sessions (code verifier + state), read once at exchange time."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from healthbot.models import OAuthSession
from healthbot.storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)

_PREFIX = "oauth_session:"


class SessionStore:
    """One pending session per device id; a retry simply overwrites it."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def save(self, session: OAuthSession) -> None:
        await self._kv.put(_PREFIX + session.device_id, session.model_dump_json())

    async def peek(self, device_id: str) -> OAuthSession | None:
        raw = await self._kv.get(_PREFIX + device_id)
        if raw is None:
            return None
        try:
            return OAuthSession.model_validate_json(raw)
        except ValidationError:
            logger.warning("session_store.corrupt_session", device=device_id)
            return None

    async def consume(self, device_id: str) -> OAuthSession | None:
        """Return the pending session and remove it."""
        session = await self.peek(device_id)
        await self._kv.delete(_PREFIX + device_id)
        return session

    async def discard(self, device_id: str) -> None:
        await self._kv.delete(_PREFIX + device_id)
