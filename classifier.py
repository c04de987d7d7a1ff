"""Failure classification for Resource API calls.

Every failed call is turned into a :class:`TransportFailure` at the network
boundary and classified once with :func:`classify`.  Only
``CREDENTIAL_EXPIRED`` and ``SESSION_INVALID`` may force a logout;
``PERMISSION_DENIED`` is an ordinary user-facing error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from _constants import (
    MAX_ERROR_MESSAGE_LEN,
    OPAQUE_REJECTION_PATTERNS,
    PERMISSION_DENIED_CODES,
    SESSION_INVALIDATION_CODES,
    SESSION_INVALIDATION_PHRASES,
)

__all__ = [
    "APIError",
    "ErrorBody",
    "FailureClassification",
    "TransportFailure",
    "classify",
    "failure_from_exception",
    "failure_from_response",
    "user_message",
]

logger = logging.getLogger("timetrack.session")


class FailureClassification(Enum):
    TRANSIENT = "transient"
    PERMISSION_DENIED = "permission_denied"
    SESSION_INVALID = "session_invalid"
    CREDENTIAL_EXPIRED = "credential_expired"

    @property
    def forces_logout(self) -> bool:
        return self in (FailureClassification.SESSION_INVALID, FailureClassification.CREDENTIAL_EXPIRED)


@dataclass(frozen=True)
class ErrorBody:
    code: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class TransportFailure:
    """A failed call as seen by the client.

    ``status`` is ``None`` when the request never produced a response; in that
    case ``exception`` holds the transport error.
    """

    status: int | None = None
    body: ErrorBody | None = None
    exception: BaseException | None = None

    @property
    def message(self) -> str:
        if self.body is not None and self.body.message:
            return self.body.message
        if self.exception is not None:
            return str(self.exception) or type(self.exception).__name__
        if self.status is not None:
            return f"HTTP {self.status} Error"
        return "Unknown error"


class APIError(Exception):
    """Raised by ``_auth.check_result`` for a failed call; carries its classification."""

    def __init__(self, failure: TransportFailure, classification: FailureClassification) -> None:
        super().__init__(failure.message)
        self.failure = failure
        self.classification = classification

    @property
    def status(self) -> int | None:
        return self.failure.status


# ---------------------------------------------------------------------------
# Boundary constructors
# ---------------------------------------------------------------------------


def _truncate(text: str) -> str:
    if len(text) > MAX_ERROR_MESSAGE_LEN:
        return text[:MAX_ERROR_MESSAGE_LEN] + "..."
    return text


def _parse_error_body(payload: Any) -> ErrorBody | None:
    """Normalise the backend's error envelopes into an :class:`ErrorBody`.

    Handles ``{"error": {"code", "message"}}``, ``{"code", "message"}``,
    ``{"error": "..."}``, ``{"detail": "..."}``, the ``{"text": ...}`` wrapper
    the transport puts around non-JSON bodies, and plain strings.
    """
    if payload is None:
        return None
    if isinstance(payload, str):
        return ErrorBody(message=_truncate(payload)) if payload.strip() else None
    if not isinstance(payload, dict):
        return None

    nested = payload.get("error")
    if isinstance(nested, dict):
        code = nested.get("code")
        message = nested.get("message") or code
    else:
        code = payload.get("code")
        message = (
            payload.get("message")
            or (nested if isinstance(nested, str) else None)
            or payload.get("detail")
            or payload.get("errorMessage")
            or payload.get("text")
        )
    if code is None and message is None:
        return None
    return ErrorBody(
        code=str(code) if code is not None else None,
        message=_truncate(str(message)) if message is not None else None,
    )


def failure_from_response(status: int, payload: Any) -> TransportFailure:
    """Build a failure for a response with an HTTP error status."""
    return TransportFailure(status=status, body=_parse_error_body(payload))


def failure_from_exception(exc: BaseException) -> TransportFailure:
    """Build a failure for a request that never reached a handler."""
    return TransportFailure(exception=exc)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _matches(text: str, patterns: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(p in lowered for p in patterns)


def _is_session_invalidation(body: ErrorBody | None) -> bool:
    if body is None:
        return False
    if body.code and body.code.upper() in PERMISSION_DENIED_CODES:
        return False
    if body.code and body.code.upper() in SESSION_INVALIDATION_CODES:
        return True
    return bool(body.message) and _matches(body.message, SESSION_INVALIDATION_PHRASES)


def classify(failure: TransportFailure) -> FailureClassification:
    """Return the classification for *failure*.  Rules are applied in priority order."""
    if failure.status == 401:
        return FailureClassification.CREDENTIAL_EXPIRED

    if failure.status == 403:
        if _is_session_invalidation(failure.body):
            return FailureClassification.SESSION_INVALID
        return FailureClassification.PERMISSION_DENIED

    if failure.status is None and failure.exception is not None:
        if _matches(failure.message, OPAQUE_REJECTION_PATTERNS):
            # Heuristic: indistinguishable from a real outage.
            logger.warning(
                "Opaque transport failure treated as session invalidation: %s",
                failure.message,
            )
            return FailureClassification.SESSION_INVALID

    return FailureClassification.TRANSIENT


_USER_MESSAGES: dict[FailureClassification | None, str] = {
    FailureClassification.TRANSIENT: "The service is temporarily unavailable. Please try again.",
    FailureClassification.PERMISSION_DENIED: (
        "Access denied. You do not have permission to perform this action."
    ),
    FailureClassification.SESSION_INVALID: "Your session is no longer valid. Please sign in again.",
    FailureClassification.CREDENTIAL_EXPIRED: (
        "Your authentication token has expired. Please sign in again."
    ),
    None: "You have been signed out.",
}


def user_message(classification: FailureClassification | None) -> str:
    """User-facing text for a classification (``None`` = user-initiated logout)."""
    return _USER_MESSAGES[classification]
