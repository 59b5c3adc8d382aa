"""Device integration service — the end-to-end connect / sync flow.

1. :meth:`authorization_url` — build the provider URL, remember the PKCE
   verifier as a pending session.
2. The provider redirects to the callback route, which relays the code to
   ``/connect``.
3. :meth:`complete_authorization` — consume the pending session, exchange
   the code, store the token.
4. :meth:`sync` — fetch readings with the stored token and merge them into
   local health-data storage.

Expired tokens are never refreshed implicitly; :meth:`refresh` exists for
callers that ask for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

import httpx
import structlog

from healthbot.bluetooth.client import DeviceClass, GattBackend
from healthbot.bluetooth.manager import BluetoothManager
from healthbot.collectors.registry import get_fetcher
from healthbot.config import Settings, get_settings
from healthbot.devices import BLUETOOTH_HR_ID, BLUETOOTH_SCALE_ID, DEVICES
from healthbot.errors import IntegrationError, InvalidRequestError, NotConnectedError
from healthbot.models import ConnectionType, DeviceConnection, HealthReading, TokenRecord, utcnow
from healthbot.oauth.authorize import AuthorizationUrlBuilder
from healthbot.oauth.exchange import TokenExchangeService
from healthbot.oauth.providers import get_provider
from healthbot.retry import RetryPolicy
from healthbot.storage.kv import KeyValueStore
from healthbot.storage.readings import HealthDataStore
from healthbot.storage.sessions import SessionStore
from healthbot.storage.tokens import TokenStore

logger = structlog.get_logger(__name__)

_BLUETOOTH_CLASSES = {
    BLUETOOTH_HR_ID: DeviceClass.HEART_RATE,
    BLUETOOTH_SCALE_ID: DeviceClass.SCALE,
}


@dataclass
class SyncResult:
    """Outcome of one fetch; ``error`` is set instead of raising."""

    device_id: str
    kind: str
    readings: list[HealthReading] = field(default_factory=list)
    stored: int = 0
    error: IntegrationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DeviceIntegrationService:
    def __init__(
        self,
        kv: KeyValueStore,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        exchange: TokenExchangeService | None = None,
        bluetooth_backend: Callable[[], GattBackend] | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.kv = kv
        self.tokens = TokenStore(kv)
        self.sessions = SessionStore(kv)
        self.readings = HealthDataStore(kv, max_records=self.settings.health_data_max_records)
        self.builder = AuthorizationUrlBuilder(self.sessions, self.settings)
        self.exchange = exchange or TokenExchangeService(self.settings, client=http_client)
        self.bluetooth = BluetoothManager(kv, self.readings, backend_factory=bluetooth_backend)
        self._http_client = http_client
        self._policy = policy or RetryPolicy.from_settings(
            self.settings, timeout=self.settings.data_request_timeout
        )
        self._last_sync: dict[str, datetime] = {}

    # ── OAuth flow ────────────────────────────────────────────

    async def authorization_url(self, device_id: str) -> str | None:
        return await self.builder.generate(device_id)

    async def complete_authorization(
        self,
        device_id: str,
        code: str,
        state: str | None = None,
        redirect_uri: str | None = None,
    ) -> TokenRecord:
        """Finish the flow started by :meth:`authorization_url`.

        Raises :class:`InvalidRequestError` when no authorization is
        pending for *device_id* or *state* does not match.
        """
        if not device_id or not code:
            raise InvalidRequestError("Missing required parameters")

        session = await self.sessions.peek(device_id)
        if session is None:
            logger.warning("oauth.no_pending_session", device=device_id)
            raise InvalidRequestError(
                "No pending authorization", f"Start the authorization flow for {device_id} first."
            )
        if state is not None and state != session.state:
            logger.warning("oauth.state_mismatch", device=device_id)
            raise InvalidRequestError("Invalid or expired state parameter")

        await self.sessions.consume(device_id)
        response = await self.exchange.exchange(
            device_id, code, code_verifier=session.code_verifier, redirect_uri=redirect_uri
        )
        record = response.to_record()
        await self.tokens.put(device_id, record)
        logger.info("oauth.device_connected", device=device_id)
        return record

    async def refresh(self, device_id: str) -> TokenRecord:
        """Explicitly renew the stored token with its refresh token."""
        current = await self.tokens.get(device_id)
        if current is None or not current.refresh_token:
            raise NotConnectedError(
                f"No refresh token stored for {device_id}", "Reconnect the device to authorize again."
            )
        response = await self.exchange.refresh(device_id, current.refresh_token)
        record = response.to_record()
        if not record.refresh_token:
            record.refresh_token = current.refresh_token
        await self.tokens.put(device_id, record)
        return record

    async def disconnect(self, device_id: str) -> None:
        if device_id in _BLUETOOTH_CLASSES:
            await self.bluetooth.disconnect(_BLUETOOTH_CLASSES[device_id])
            return
        get_provider(device_id, self.settings)
        await self.tokens.clear(device_id)
        await self.sessions.discard(device_id)
        self._last_sync.pop(device_id, None)
        logger.info("device.disconnected", device=device_id)

    # ── Data ──────────────────────────────────────────────────

    async def sync(
        self,
        device_id: str,
        kind: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> SyncResult:
        """Fetch *kind* readings (default: last 7 days) and store them."""
        end = end or utcnow()
        start = start or end - timedelta(days=7)
        result = SyncResult(device_id=device_id, kind=kind)

        try:
            fetcher = get_fetcher(device_id, self.tokens, policy=self._policy, client=self._http_client)
        except ValueError as exc:
            result.error = InvalidRequestError("Sync not supported", str(exc))
            return result

        try:
            result.readings = await fetcher.fetch(kind, start, end)
        except IntegrationError as exc:
            logger.warning("device.sync_failed", device=device_id, kind=kind, error=exc.message)
            result.error = exc
            return result

        result.stored = await self.readings.store_health_data(result.readings)
        self._last_sync[device_id] = utcnow()
        return result

    async def record_manual(self, reading: HealthReading) -> int:
        return await self.readings.store_health_data([reading])

    # ── Status ────────────────────────────────────────────────

    async def connection_statuses(self) -> list[DeviceConnection]:
        statuses = []
        for device in DEVICES:
            connected = False
            last_sync: datetime | None = None
            if device.connection_type == ConnectionType.OAUTH:
                connected = await self.tokens.is_valid(device.id)
                last_sync = self._last_sync.get(device.id)
            elif device.connection_type == ConnectionType.WEB_BLUETOOTH:
                connected, last_sync = await self.bluetooth.status(_BLUETOOTH_CLASSES[device.id])
            elif device.connection_type == ConnectionType.MANUAL:
                connected = True
            statuses.append(
                DeviceConnection(
                    id=device.id,
                    name=device.name,
                    description=device.description,
                    connection_type=device.connection_type,
                    connected=connected,
                    last_sync=last_sync,
                    metrics=list(device.metrics),
                    supported_features=list(device.supported_features),
                )
            )
        return statuses

    async def connection_status(self, device_id: str) -> DeviceConnection | None:
        return next((s for s in await self.connection_statuses() if s.id == device_id), None)

    async def close(self) -> None:
        await self.bluetooth.disconnect_all()
