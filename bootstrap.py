"""Bootstrap Sequencer.

Creates the server-side session record right after sign-in.  When session
creation is itself rejected for lack of a session (the chicken-and-egg
deadlock), a durable manual-resolution marker is written and the sequencer
halts until the user explicitly retries or logs out.

States::

    IDLE -> ATTEMPTING -> SUCCEEDED
                       -> FAILED_RETRYABLE
                       -> FAILED_MANUAL_RESOLUTION

``retry()`` is the only way back into ATTEMPTING from a failed state.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from _auth import check_result
from _constants import KEY_BOOTSTRAP_ERROR_MARKER, KEY_CACHED_SESSION_ID, KEY_LOGIN_TIMESTAMP
from classifier import APIError, FailureClassification, user_message
from clients.sessions import SessionRecord, SessionsClient
from credentials import Credential
from logout import LogoutCoordinator
from storage import KeyValueStore

__all__ = ["BootstrapOutcome", "BootstrapSequencer", "BootstrapState"]

logger = logging.getLogger("timetrack.session")

MANUAL_RESOLUTION_ERROR = (
    "Session bootstrap failed: the backend rejected session creation for a "
    "newly authenticated user"
)


class BootstrapState(Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_MANUAL_RESOLUTION = "failed_manual_resolution"


@dataclass(frozen=True)
class BootstrapOutcome:
    success: bool
    error: str | None = None
    requires_manual_resolution: bool = False
    session_id: str | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "success": self.success,
                "error": self.error,
                "requiresManualResolution": self.requires_manual_resolution,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> BootstrapOutcome:
        """Parse a stored marker.

        Raises:
            ValueError: If *raw* is not a JSON object.
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Bootstrap marker is not an object")
        return cls(
            success=bool(data.get("success", False)),
            error=data.get("error"),
            requires_manual_resolution=bool(data.get("requiresManualResolution", False)),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class BootstrapSequencer:
    """Runs the bootstrap state machine against one durable store."""

    def __init__(
        self,
        sessions: SessionsClient,
        store: KeyValueStore,
        logout: LogoutCoordinator | None = None,
        *,
        probe_existing_sessions: bool = True,
    ) -> None:
        self._sessions = sessions
        self._store = store
        self._logout = logout
        self._probe_existing = probe_existing_sessions
        self._state = BootstrapState.IDLE
        self._outcome: BootstrapOutcome | None = None
        self._attempt: asyncio.Task[BootstrapOutcome] | None = None

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def outcome(self) -> BootstrapOutcome | None:
        return self._outcome

    # -- durable marker -----------------------------------------------------

    def _read_marker(self) -> BootstrapOutcome | None:
        raw = self._store.get(KEY_BOOTSTRAP_ERROR_MARKER)
        if raw is None:
            return None
        try:
            return BootstrapOutcome.from_json(raw)
        except (ValueError, TypeError) as exc:
            logger.warning("Discarding unreadable bootstrap marker: %s", exc)
            self._store.delete(KEY_BOOTSTRAP_ERROR_MARKER)
            return None

    def has_pending_manual_resolution(self) -> bool:
        """True when a manual-resolution marker exists and no session id is cached."""
        marker = self._read_marker()
        if marker is None or self._store.get(KEY_CACHED_SESSION_ID):
            return False
        return marker.requires_manual_resolution and not marker.success

    # -- transitions --------------------------------------------------------

    async def start(self, credential: Credential) -> BootstrapOutcome:
        """Run bootstrap once for a freshly acquired credential.

        Only the first call leaves IDLE; later calls return the current
        outcome (or join the in-flight attempt).
        """
        if self._state is not BootstrapState.IDLE:
            if self._attempt is not None and not self._attempt.done():
                return await asyncio.shield(self._attempt)
            return self._outcome or BootstrapOutcome(success=False, error="Bootstrap not completed")

        cached_id = self._store.get(KEY_CACHED_SESSION_ID)
        if cached_id:
            if self._store.get(KEY_BOOTSTRAP_ERROR_MARKER) is not None:
                logger.info("Discarding stale bootstrap marker; session already established")
                self._store.delete(KEY_BOOTSTRAP_ERROR_MARKER)
            logger.debug("Cached session id present; skipping bootstrap")
            return self._finish(
                BootstrapState.SUCCEEDED,
                BootstrapOutcome(success=True, session_id=cached_id),
            )

        marker = self._read_marker()
        if marker is not None and marker.requires_manual_resolution and not marker.success:
            logger.info("Manual-resolution marker present; awaiting user decision")
            return self._finish(BootstrapState.FAILED_MANUAL_RESOLUTION, marker)

        return await self._run_attempt(credential)

    async def retry(self, credential: Credential) -> BootstrapOutcome:
        """Explicit user-triggered retry from a failed state."""
        if self._state is BootstrapState.ATTEMPTING and self._attempt is not None:
            return await asyncio.shield(self._attempt)
        if self._state not in (
            BootstrapState.FAILED_RETRYABLE,
            BootstrapState.FAILED_MANUAL_RESOLUTION,
        ):
            raise RuntimeError(f"Cannot retry bootstrap from state {self._state.value}")
        logger.info("Retrying session bootstrap")
        return await self._run_attempt(credential)

    async def _run_attempt(self, credential: Credential) -> BootstrapOutcome:
        self._state = BootstrapState.ATTEMPTING
        self._attempt = asyncio.ensure_future(self._attempt_once(credential))
        return await asyncio.shield(self._attempt)

    def _finish(self, state: BootstrapState, outcome: BootstrapOutcome) -> BootstrapOutcome:
        self._state = state
        self._outcome = outcome
        return outcome

    # -- one attempt --------------------------------------------------------

    async def _attempt_once(self, credential: Credential) -> BootstrapOutcome:
        login_time = datetime.now(UTC)
        logger.debug("Bootstrapping session for subject %s", credential.subject_id)
        try:
            result = check_result(
                await self._sessions.create(
                    credential.token, credential.subject_id, login_time=login_time
                )
            )
            record = SessionRecord.from_payload(result.get("data"))
        except APIError as exc:
            return await self._on_failure(credential, exc, login_time)
        except ValueError as exc:
            logger.warning("Session creation returned an invalid record: %s", exc)
            return self._finish(
                BootstrapState.FAILED_RETRYABLE,
                BootstrapOutcome(success=False, error=f"Invalid session record: {exc}"),
            )
        except Exception:
            logger.exception("Session bootstrap failed unexpectedly")
            return self._finish(
                BootstrapState.FAILED_RETRYABLE,
                BootstrapOutcome(success=False, error="Session bootstrap failed. Please try again."),
            )
        return self._succeed(record.id, record.login_time or login_time.isoformat())

    def _succeed(self, session_id: str, login_time: str) -> BootstrapOutcome:
        self._store.set(KEY_CACHED_SESSION_ID, session_id)
        self._store.set(KEY_LOGIN_TIMESTAMP, login_time)
        self._store.delete(KEY_BOOTSTRAP_ERROR_MARKER)
        logger.info("Session bootstrap succeeded (session=%s)", session_id)
        return self._finish(
            BootstrapState.SUCCEEDED, BootstrapOutcome(success=True, session_id=session_id)
        )

    async def _on_failure(
        self,
        credential: Credential,
        exc: APIError,
        login_time: datetime,
    ) -> BootstrapOutcome:
        classification = exc.classification
        logger.warning("Session creation failed (%s): %s", classification.value, exc)

        if classification is FailureClassification.TRANSIENT:
            return self._finish(
                BootstrapState.FAILED_RETRYABLE,
                BootstrapOutcome(success=False, error=str(exc)),
            )

        if classification is FailureClassification.CREDENTIAL_EXPIRED:
            if self._logout is not None:
                self._logout.request_logout(classification)
            return self._finish(
                BootstrapState.FAILED_RETRYABLE,
                BootstrapOutcome(success=False, error=user_message(classification)),
            )

        first_time = not self._store.get(KEY_CACHED_SESSION_ID)
        if not first_time:
            if classification is FailureClassification.SESSION_INVALID and self._logout is not None:
                self._logout.request_logout(classification)
            return self._finish(
                BootstrapState.FAILED_RETRYABLE,
                BootstrapOutcome(success=False, error=str(exc)),
            )

        adopted = await self._adopt_existing_session(credential)
        if adopted is not None:
            return self._succeed(adopted.id, adopted.login_time or login_time.isoformat())

        outcome = BootstrapOutcome(
            success=False,
            error=MANUAL_RESOLUTION_ERROR,
            requires_manual_resolution=True,
        )
        self._store.set(KEY_BOOTSTRAP_ERROR_MARKER, outcome.to_json())
        logger.error("Session bootstrap deadlock detected; manual resolution required")
        return self._finish(BootstrapState.FAILED_MANUAL_RESOLUTION, outcome)

    async def _adopt_existing_session(self, credential: Credential) -> SessionRecord | None:
        """Look for a session created elsewhere (e.g. by the backend at sign-in)."""
        if not self._probe_existing:
            return None
        try:
            result = check_result(
                await self._sessions.list_sessions(credential.token, credential.subject_id)
            )
        except APIError as exc:
            logger.debug("Existing-session probe failed (%s)", exc.classification.value)
            return None
        data = result.get("data")
        if isinstance(data, dict):
            data = data.get("sessions") or data.get("items")
        if not isinstance(data, list):
            return None
        records: list[SessionRecord] = []
        for item in data:
            try:
                records.append(SessionRecord.from_payload(item))
            except ValueError:
                continue
        if not records:
            return None
        current = next((r for r in records if r.is_current), records[0])
        logger.info("Adopting existing session %s", current.id)
        return current
