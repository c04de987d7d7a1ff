"""Session lifecycle wiring: credential -> bootstrap -> initial load.

The UI only triggers transitions on :class:`SessionLifecycle`
(``start``, ``retry_bootstrap``, ``retry_load``, ``logout``) and renders
the returned :class:`StartupResult`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from bootstrap import BootstrapOutcome, BootstrapSequencer, BootstrapState
from clients import APIClientRegistry
from credentials import (
    CredentialError,
    CredentialProvider,
    IdentityProvider,
    NoCredentialError,
    TokenSet,
)
from loader import DataLoadOrchestrator, LoadReport
from logout import LogoutCoordinator, ReloadHook
from storage import KeyValueStore

__all__ = ["SessionLifecycle", "StartupResult", "StaticIdentityProvider"]

logger = logging.getLogger("timetrack.session")

Stage = Literal["signed_out", "bootstrap", "loaded"]


@dataclass(frozen=True)
class StartupResult:
    stage: Stage
    bootstrap: BootstrapOutcome | None = None
    load: LoadReport | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "bootstrap": self.bootstrap.as_dict() if self.bootstrap else None,
            "load": self.load.as_dict() if self.load else None,
            "error": self.error,
        }


class StaticIdentityProvider:
    """Identity provider holding tokens handed to the client out of band."""

    def __init__(self, access_token: str | None = None, id_token: str | None = None) -> None:
        self._tokens = TokenSet(access_token=access_token or None, id_token=id_token or None)

    async def sign_in(self, identifier: str, password: str) -> None:
        raise NotImplementedError("Interactive sign-in is handled by the identity provider UI")

    async def sign_out(self) -> None:
        self._tokens = TokenSet()

    async def get_current_credential(self, force_refresh: bool = False) -> TokenSet:
        return self._tokens


class SessionLifecycle:
    """Owns one coordinator of each kind for a single application session."""

    def __init__(
        self,
        identity: IdentityProvider,
        registry: APIClientRegistry,
        store: KeyValueStore,
        reload: ReloadHook,
    ) -> None:
        self.credentials = CredentialProvider(identity)
        self.logout_coordinator = LogoutCoordinator(
            self.credentials, registry.sessions, store, reload
        )
        self.bootstrap = BootstrapSequencer(registry.sessions, store, self.logout_coordinator)
        self.loader = DataLoadOrchestrator.for_client(
            self.credentials, registry.resources, self.logout_coordinator
        )

    async def start(self) -> StartupResult:
        """Acquire the credential, bootstrap once, then load initial data."""
        try:
            credential = await self.credentials.get_credential()
        except NoCredentialError as exc:
            return StartupResult(stage="signed_out", error=str(exc))
        except CredentialError as exc:
            logger.error("Credential unusable: %s", exc)
            return StartupResult(stage="signed_out", error=str(exc))

        outcome = await self.bootstrap.start(credential)
        return await self._after_bootstrap(outcome)

    async def retry_bootstrap(self) -> StartupResult:
        """User chose "retry" on the recovery screen."""
        try:
            credential = await self.credentials.get_credential(force_refresh=True)
        except CredentialError as exc:
            return StartupResult(stage="signed_out", error=str(exc))
        outcome = await self.bootstrap.retry(credential)
        return await self._after_bootstrap(outcome)

    async def retry_load(self) -> StartupResult:
        """User chose "retry" on the load-error screen."""
        report = await self.loader.retry()
        return StartupResult(stage="loaded", bootstrap=self.bootstrap.outcome, load=report)

    async def logout(self) -> None:
        """User chose "sign out" (recovery screen, load-error screen or menu).

        Returns once the logout sequence, including the reload hook, has run.
        """
        task = self.logout_coordinator.request_logout()
        if task is not None:
            await task

    async def _after_bootstrap(self, outcome: BootstrapOutcome) -> StartupResult:
        # Retryable failures still load; the outcome is surfaced alongside.
        halted = (
            self.bootstrap.state is BootstrapState.FAILED_MANUAL_RESOLUTION
            or self.logout_coordinator.in_progress
        )
        if halted:
            return StartupResult(stage="bootstrap", bootstrap=outcome, error=outcome.error)
        report = await self.loader.load_all()
        return StartupResult(
            stage="loaded",
            bootstrap=outcome,
            load=report,
            error=None if outcome.success else outcome.error,
        )
