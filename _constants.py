"""Shared constants for the session lifecycle coordinator."""

from __future__ import annotations

MAX_TOKEN_LENGTH: int = 8192
MAX_ERROR_MESSAGE_LEN: int = 500

# Durable client-side storage keys.
KEY_CACHED_SESSION_ID: str = "cachedSessionId"
KEY_LOGIN_TIMESTAMP: str = "loginTimestamp"
KEY_BOOTSTRAP_ERROR_MARKER: str = "bootstrapErrorMarker"
KEY_REMEMBERED_IDENTIFIER: str = "rememberedIdentifier"
KEY_REMEMBER_IDENTIFIER_PREFERENCE: str = "rememberIdentifierPreference"

SESSION_ARTIFACT_KEYS: tuple[str, ...] = (
    KEY_CACHED_SESSION_ID,
    KEY_LOGIN_TIMESTAMP,
    KEY_BOOTSTRAP_ERROR_MARKER,
)

# 403 messages that mean the server-side session is gone, not a permission problem.
SESSION_INVALIDATION_PHRASES: tuple[str, ...] = (
    "no active sessions",
    "session has been terminated",
    "authentication required",
    "session is no longer valid",
    "explicit deny",
)
SESSION_INVALIDATION_CODES: frozenset[str] = frozenset(
    {"SESSION_TERMINATED", "AUTHENTICATION_FAILED", "SESSION_VALIDATION_FAILED"}
)
PERMISSION_DENIED_CODES: frozenset[str] = frozenset({"UNAUTHORIZED_PROFILE_ACCESS"})

# Transport failures that surface an authorizer rejection without a status.
OPAQUE_REJECTION_PATTERNS: tuple[str, ...] = (
    "cors",
    "access-control-allow-origin",
    "networkerror",
    "network error",
    "failed to fetch",
    "blocked by",
)

# Initial-load resources, in issue order.
INITIAL_RESOURCES: tuple[str, ...] = (
    "current_user",
    "clients",
    "projects",
    "time_entries",
    "users",
    "invoices",
)
CRITICAL_RESOURCES: frozenset[str] = frozenset({"current_user", "clients", "projects"})
