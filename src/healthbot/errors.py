"""Exception hierarchy for device integrations.

Every error carries a short, user-legible ``message``, optional
``details`` and the HTTP status the API layer should answer with.  The
API converts them into ``{"error": message, "details": details}``.
"""

from __future__ import annotations

from enum import Enum


class IntegrationError(Exception):
    """Base class for every expected failure in the integration layer."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: str = "",
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(IntegrationError):
    """Unknown provider or missing client credentials."""

    status_code = 400


class InvalidRequestError(IntegrationError):
    """Missing parameters, state mismatch or no pending authorization."""

    status_code = 400


class TransportErrorKind(str, Enum):
    TIMEOUT = "timeout"
    DNS = "dns"
    CONNECTION_REFUSED = "connection_refused"
    NETWORK = "network"


_TRANSPORT_MESSAGES: dict[TransportErrorKind, tuple[str, str]] = {
    TransportErrorKind.TIMEOUT: (
        "Connection timeout",
        "Unable to reach the OAuth server. Please check your internet connection and try again.",
    ),
    TransportErrorKind.DNS: (
        "DNS resolution failed",
        "Unable to resolve the OAuth server address. Please check your network configuration.",
    ),
    TransportErrorKind.CONNECTION_REFUSED: (
        "Connection refused",
        "The OAuth server refused the connection.",
    ),
    TransportErrorKind.NETWORK: (
        "Network error",
        "The request failed before a response was received.",
    ),
}


class TransportError(IntegrationError):
    """The remote endpoint could not be reached within the retry budget."""

    status_code = 500

    def __init__(self, kind: TransportErrorKind, attempts: int = 1, details: str = "") -> None:
        message, default_details = _TRANSPORT_MESSAGES[kind]
        super().__init__(message, details or default_details)
        self.kind = kind
        self.attempts = attempts


class ProviderRejectedError(IntegrationError):
    """The provider answered with a non-2xx status; body kept verbatim."""

    def __init__(self, status_code: int, body: str, message: str = "Token exchange failed") -> None:
        super().__init__(message, body, status_code=status_code)
        self.body = body


class NotConnectedError(IntegrationError):
    """No valid token is stored for the provider."""

    status_code = 401


class CapabilityError(IntegrationError):
    """A required platform capability (Bluetooth LE) is missing."""

    status_code = 503


class DecodeError(IntegrationError):
    """A binary GATT payload did not match the expected layout."""

    status_code = 422
