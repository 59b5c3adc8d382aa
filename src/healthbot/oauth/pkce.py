"""PKCE (RFC 7636) code verifier / challenge generation."""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass
from typing import Literal

ChallengeMethod = Literal["S256", "plain"]

DEFAULT_METHOD: ChallengeMethod = "S256"


def base64url_encode(data: bytes) -> str:
    """URL-safe base64 without ``=`` padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier(num_bytes: int = 32) -> str:
    """Return a verifier built from *num_bytes* of CSPRNG output (43 chars for 32)."""
    return base64url_encode(secrets.token_bytes(num_bytes))


def generate_code_challenge(verifier: str, method: ChallengeMethod = DEFAULT_METHOD) -> str:
    if method == "plain":
        return verifier
    if method == "S256":
        return base64url_encode(hashlib.sha256(verifier.encode("ascii")).digest())
    raise ValueError(f"Unsupported code_challenge_method: {method}")


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str
    method: ChallengeMethod = DEFAULT_METHOD

    @classmethod
    def generate(cls, method: ChallengeMethod = DEFAULT_METHOD) -> PKCEPair:
        verifier = generate_code_verifier()
        return cls(verifier=verifier, challenge=generate_code_challenge(verifier, method), method=method)
