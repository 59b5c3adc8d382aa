"""Abstract base class for provider health-data fetchers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import httpx
import structlog

from healthbot.errors import NotConnectedError, ProviderRejectedError
from healthbot.models import HealthReading, ProviderId, TokenRecord
from healthbot.retry import RetryPolicy
from healthbot.storage.tokens import TokenStore

logger = structlog.get_logger(__name__)


class BaseFetcher(ABC):
    """Contract that every provider-specific fetcher implements.

    A fetcher reads the stored token for its provider, calls the data API
    and turns the provider's schema into :class:`HealthReading` objects.

    * no valid token → :class:`NotConnectedError` (not retried)
    * unsupported kind → warning, empty list
    * non-2xx → :class:`ProviderRejectedError`
    * transport failure → :class:`~healthbot.errors.TransportError`
    * malformed or partial JSON → warning, empty list
    """

    provider: ProviderId
    display_name: str
    api_base_url: str
    supported_kinds: frozenset[str] = frozenset()

    def __init__(
        self,
        tokens: TokenStore,
        policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._tokens = tokens
        self._policy = policy or RetryPolicy()
        self._client = client

    async def fetch(self, kind: str, range_start: datetime, range_end: datetime) -> list[HealthReading]:
        """Fetch readings of *kind* between *range_start* and *range_end*."""
        token = await self._valid_token()

        if kind not in self.supported_kinds:
            logger.warning("fetcher.unsupported_kind", provider=self.provider.value, kind=kind)
            return []

        readings = await self._fetch(token, kind, range_start, range_end)
        logger.info(
            "fetcher.fetched",
            provider=self.provider.value,
            kind=kind,
            count=len(readings),
        )
        return readings

    @abstractmethod
    async def _fetch(
        self,
        token: TokenRecord,
        kind: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[HealthReading]:
        """Provider-specific request + parse."""

    # ── Helpers ───────────────────────────────────────────────

    async def _valid_token(self) -> TokenRecord:
        token = await self._tokens.get(self.provider.value)
        if token is None or not token.access_token or token.is_expired():
            raise NotConnectedError(f"Not connected to {self.display_name}")
        return token

    async def _request(
        self,
        method: str,
        path: str,
        token: TokenRecord,
        **kwargs: Any,
    ) -> Any:
        """Send an authorised request and return the decoded JSON (``None`` if undecodable)."""
        url = f"{self.api_base_url}{path}"
        headers = {"Authorization": f"Bearer {token.access_token}"}

        resp = await self._policy.run(
            lambda: self._send(method, url, headers, **kwargs),
            operation=f"fetch.{self.provider.value}",
        )
        if not resp.is_success:
            logger.error(
                "fetcher.api_error",
                provider=self.provider.value,
                status=resp.status_code,
                body=resp.text,
            )
            raise ProviderRejectedError(
                resp.status_code, resp.text, message=f"{self.display_name} API error: {resp.status_code}"
            )
        try:
            return resp.json()
        except ValueError:
            logger.warning("fetcher.malformed_response", provider=self.provider.value)
            return None

    async def _send(self, method: str, url: str, headers: dict[str, str], **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=self._policy.timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    def _safe_parse(self, parser: Any, *args: Any) -> list[HealthReading]:
        """Run *parser*; a response that does not match the schema yields ``[]``."""
        try:
            return parser(*args)
        except (KeyError, TypeError, ValueError, AttributeError, IndexError) as exc:
            logger.warning("fetcher.malformed_response", provider=self.provider.value, error=str(exc))
            return []
