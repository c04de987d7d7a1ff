"""Credential Provider.

Reads the current bearer credential from the identity provider and decodes
it locally.  The subject (``sub``) claim is the canonical user key used in
every Resource API path; it need not match any cached display identifier.
Nothing here is persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

import jwt

from _constants import MAX_TOKEN_LENGTH

__all__ = [
    "Credential",
    "CredentialError",
    "CredentialKind",
    "CredentialProvider",
    "IdentityProvider",
    "MalformedCredentialError",
    "NoCredentialError",
    "TokenSet",
    "decode_payload",
    "get_expiry",
    "get_subject_id",
]

logger = logging.getLogger("timetrack.session")


class CredentialError(Exception):
    """Base class for credential acquisition failures."""


class NoCredentialError(CredentialError):
    """The identity provider has no usable credential."""


class MalformedCredentialError(CredentialError):
    """The credential could not be decoded or lacks a required claim."""


class CredentialKind(Enum):
    ACCESS_TOKEN = "access_token"
    ID_TOKEN = "id_token"


@dataclass(frozen=True)
class TokenSet:
    access_token: str | None = None
    id_token: str | None = None


@dataclass(frozen=True)
class Credential:
    subject_id: str
    kind: CredentialKind
    expires_at: datetime
    token: str

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= datetime.now(UTC)

    def __repr__(self) -> str:
        # Keep the raw token out of logs and tracebacks.
        return (
            f"Credential(subject_id={self.subject_id!r}, kind={self.kind.value}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


class IdentityProvider(Protocol):
    """External identity provider (black box)."""

    async def sign_in(self, identifier: str, password: str) -> None: ...

    async def sign_out(self) -> None: ...

    async def get_current_credential(self, force_refresh: bool = False) -> TokenSet: ...


# ---------------------------------------------------------------------------
# Local decoding
# ---------------------------------------------------------------------------


def decode_payload(token: str) -> dict[str, Any]:
    """Decode the JWT claims without verifying the signature.

    Raises:
        MalformedCredentialError: If the token is not a decodable JWT.
    """
    if not token or not token.strip():
        raise MalformedCredentialError("Credential is empty")
    if len(token) > MAX_TOKEN_LENGTH:
        raise MalformedCredentialError(f"Credential exceeds maximum length ({MAX_TOKEN_LENGTH})")
    try:
        claims = jwt.decode(
            token.strip(),
            options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
        )
    except jwt.PyJWTError as exc:
        raise MalformedCredentialError(f"Credential could not be decoded: {exc}") from exc
    if not isinstance(claims, dict):
        raise MalformedCredentialError("Credential payload is not an object")
    return claims


def get_subject_id(token: str) -> str:
    """Return the ``sub`` claim of *token*."""
    sub = decode_payload(token).get("sub")
    if not isinstance(sub, str) or not sub.strip():
        raise MalformedCredentialError("Credential does not contain a subject claim")
    return sub.strip()


def get_expiry(token: str) -> datetime:
    """Return the ``exp`` claim of *token* as an aware UTC datetime."""
    exp = decode_payload(token).get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise MalformedCredentialError("Credential does not contain an expiry claim")
    return datetime.fromtimestamp(exp, tz=UTC)


# ---------------------------------------------------------------------------
# CredentialProvider
# ---------------------------------------------------------------------------


class CredentialProvider:
    """Obtains the current bearer credential, preferring the access token."""

    def __init__(self, identity: IdentityProvider) -> None:
        self._identity = identity

    @property
    def identity(self) -> IdentityProvider:
        return self._identity

    async def get_credential(self, force_refresh: bool = False) -> Credential:
        """Return the current credential.

        An already-expired credential read without ``force_refresh`` is
        re-read once with a forced refresh.

        Raises:
            NoCredentialError: If no token is available.
            MalformedCredentialError: If the chosen token cannot be decoded.
        """
        credential = await self._read(force_refresh)
        if credential.is_expired and not force_refresh:
            logger.debug("Cached credential expired, forcing refresh")
            credential = await self._read(True)
        return credential

    async def _read(self, force_refresh: bool) -> Credential:
        try:
            tokens = await self._identity.get_current_credential(force_refresh)
        except CredentialError:
            raise
        except Exception as exc:
            logger.warning("Identity provider failed to return a credential: %s", exc)
            raise NoCredentialError("Identity provider did not return a credential") from exc

        if tokens is not None and tokens.access_token:
            token, kind = tokens.access_token, CredentialKind.ACCESS_TOKEN
        elif tokens is not None and tokens.id_token:
            logger.warning(
                "Access token unavailable; falling back to ID token "
                "(some endpoints may reject it)"
            )
            token, kind = tokens.id_token, CredentialKind.ID_TOKEN
        else:
            raise NoCredentialError("No access or ID token available. Please sign in.")

        return Credential(
            subject_id=get_subject_id(token),
            kind=kind,
            expires_at=get_expiry(token),
            token=token.strip(),
        )

    def get_subject_id(self, credential: Credential) -> str:
        """Decode *credential* locally and return its subject identifier."""
        return get_subject_id(credential.token)
