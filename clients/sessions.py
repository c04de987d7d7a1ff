"""Domain client for server-side session records.

Uses composition: holds a reference to :class:`BaseAPIClient` for HTTP
transport and delegates all network I/O through ``self._base._request()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from clients._base import BaseAPIClient, user_path

__all__ = ["SessionRecord", "SessionsClient"]


@dataclass(frozen=True)
class SessionRecord:
    """A session record owned by the backend.  The client only caches ``id``."""

    id: str
    login_time: str
    last_activity: str
    user_agent: str
    ip_address: str | None = None
    is_current: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> SessionRecord:
        """Build a record from an API payload.

        Raises:
            ValueError: If the payload is not an object or has no ``id``.
        """
        if isinstance(payload, dict) and isinstance(payload.get("session"), dict):
            payload = payload["session"]
        if not isinstance(payload, dict):
            raise ValueError("Session payload is not an object")
        session_id = payload.get("id") or payload.get("sessionId")
        if not session_id:
            raise ValueError("Session payload has no id")
        login_time = str(payload.get("loginTime") or "")
        return cls(
            id=str(session_id),
            login_time=login_time,
            last_activity=str(payload.get("lastActivity") or login_time),
            user_agent=str(payload.get("userAgent") or ""),
            ip_address=payload.get("ipAddress"),
            is_current=bool(payload.get("isCurrent", False)),
        )


class SessionsClient:
    """Session create/list/logout on ``/users/{subject_id}/...``."""

    def __init__(self, base: BaseAPIClient) -> None:
        self._base = base

    async def create(
        self,
        token: str,
        subject_id: str,
        *,
        login_time: datetime,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        """Create a session record for the freshly authenticated user."""
        payload = {
            "userAgent": user_agent or self._base.user_agent,
            "loginTime": login_time.isoformat(),
        }
        return await self._base._request(
            "POST", user_path(subject_id, "sessions"), token, data=payload
        )

    async def list_sessions(self, token: str, subject_id: str) -> dict[str, Any]:
        """List the user's session records."""
        return await self._base._request("GET", user_path(subject_id, "sessions"), token)

    async def logout(self, token: str, subject_id: str) -> dict[str, Any]:
        """Ask the backend to clean up the current session."""
        return await self._base._request("POST", user_path(subject_id, "logout"), token, data={})
