"""Logout Coordinator.

The single authority that may terminate the local session.  The first
``request_logout`` call schedules the sequence; every later call is dropped
until the process reloads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from _constants import (
    KEY_REMEMBER_IDENTIFIER_PREFERENCE,
    KEY_REMEMBERED_IDENTIFIER,
    SESSION_ARTIFACT_KEYS,
)
from classifier import FailureClassification, user_message
from clients.sessions import SessionsClient
from credentials import CredentialProvider
from storage import KeyValueStore

__all__ = ["LogoutCoordinator", "LogoutEvent"]

logger = logging.getLogger("timetrack.session")


@dataclass(frozen=True)
class LogoutEvent:
    """The "force-logout-occurred" notification."""

    reason: FailureClassification | None
    message: str


LogoutListener = Callable[[LogoutEvent], None]
ReloadHook = Callable[[], Awaitable[None] | None]


class LogoutCoordinator:
    """Single-flight logout: backend cleanup, local clear, sign-out, reload."""

    def __init__(
        self,
        credentials: CredentialProvider,
        sessions: SessionsClient | None,
        store: KeyValueStore,
        reload: ReloadHook,
    ) -> None:
        self._credentials = credentials
        self._sessions = sessions
        self._store = store
        self._reload = reload
        self._listeners: list[LogoutListener] = []
        self._in_progress = False
        self._task: asyncio.Task[None] | None = None
        self.completed = asyncio.Event()

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def add_listener(self, listener: LogoutListener) -> None:
        self._listeners.append(listener)

    def request_logout(
        self,
        reason: FailureClassification | None = None,
    ) -> asyncio.Task[None] | None:
        """Start the logout sequence unless one is already underway.

        Returns the scheduled task for the first call, ``None`` when dropped.
        """
        if self._in_progress:
            logger.debug("Logout already in progress; dropping request (reason=%s)", reason)
            return None
        self._in_progress = True
        logger.info("Logout requested (reason=%s)", reason.value if reason else "user")
        self._task = asyncio.ensure_future(self._run(reason))
        return self._task

    async def _run(self, reason: FailureClassification | None) -> None:
        try:
            await self._backend_logout()
            self._clear_local_state()
            await self._sign_out()
            self._notify(LogoutEvent(reason=reason, message=user_message(reason)))
        finally:
            await self._force_reload()
            self.completed.set()

    async def _backend_logout(self) -> None:
        if self._sessions is None:
            return
        try:
            credential = await self._credentials.get_credential()
            result = await self._sessions.logout(credential.token, credential.subject_id)
            if result.get("status") != "success":
                logger.warning("Backend logout failed: %s", result.get("message"))
        except Exception as exc:
            logger.warning("Backend logout skipped: %s", exc)

    def _clear_local_state(self) -> None:
        for key in SESSION_ARTIFACT_KEYS:
            self._store.delete(key)
        # Remembered identifier survives unless the user opted out.
        if self._store.get(KEY_REMEMBER_IDENTIFIER_PREFERENCE) == "false":
            self._store.delete(KEY_REMEMBERED_IDENTIFIER)
        logger.info("Local session data cleared")

    async def _sign_out(self) -> None:
        try:
            await self._credentials.identity.sign_out()
        except Exception as exc:
            logger.warning("Identity provider sign-out failed: %s", exc)

    def _notify(self, event: LogoutEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Logout listener failed")

    async def _force_reload(self) -> None:
        try:
            result = self._reload()
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.exception("Client reload failed")
