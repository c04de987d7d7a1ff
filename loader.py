"""Data Load Orchestrator.

Issues the fixed set of initial resource fetches concurrently with
all-settled semantics, then decides between a full-page error (a critical
resource failed) and a degraded-but-usable view (only non-critical ones did).
``load_all`` runs at most once per authenticated session until ``reset``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from _auth import check_result, handle_failure
from _constants import CRITICAL_RESOURCES, INITIAL_RESOURCES
from classifier import APIError, FailureClassification
from clients.resources import ResourcesClient
from credentials import CredentialError, CredentialProvider
from logout import LogoutCoordinator, LogoutEvent

__all__ = ["DataLoadOrchestrator", "LoadReport", "LoadState", "ResourceState"]

logger = logging.getLogger("timetrack.loader")

Fetcher = Callable[[str], Awaitable[dict[str, Any]]]
LoadStatus = Literal["success", "partial", "failed"]
LoadAction = Literal["retry", "sign_out"]


@dataclass
class ResourceState:
    loading: bool = False
    error: str | None = None
    classification: FailureClassification | None = None


@dataclass
class LoadState:
    """Per-resource loading/error map for one application session."""

    resources: dict[str, ResourceState] = field(default_factory=dict)
    critical: frozenset[str] = CRITICAL_RESOURCES

    @property
    def loading(self) -> bool:
        return any(r.loading for r in self.resources.values())

    @property
    def critical_failures(self) -> list[str]:
        return [
            name
            for name, r in self.resources.items()
            if name in self.critical and r.error is not None
        ]

    @property
    def non_critical_failures(self) -> list[str]:
        return [
            name
            for name, r in self.resources.items()
            if name not in self.critical and r.error is not None
        ]

    def reset(self) -> None:
        self.resources.clear()

    def as_dict(self) -> dict[str, Any]:
        return {
            "resources": {
                name: {"loading": r.loading, "error": r.error}
                for name, r in self.resources.items()
            },
            "criticalFailures": self.critical_failures,
        }


@dataclass(frozen=True)
class LoadReport:
    status: LoadStatus
    partial_data: bool = False
    action: LoadAction | None = None
    failures: dict[str, str] = field(default_factory=dict)
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "partialData": self.partial_data,
            "action": self.action,
            "failures": dict(self.failures),
            "message": self.message,
        }


def default_fetchers(resources: ResourcesClient) -> dict[str, Fetcher]:
    """Map each initial-load resource name to its client call."""
    return {
        "current_user": resources.get_current_user,
        "clients": resources.list_clients,
        "projects": resources.list_projects,
        "time_entries": resources.list_time_entries,
        "users": resources.list_users,
        "invoices": resources.list_invoices,
    }


class DataLoadOrchestrator:
    """Single-flight initial data load with partial-failure tolerance."""

    def __init__(
        self,
        credentials: CredentialProvider,
        fetchers: dict[str, Fetcher],
        logout: LogoutCoordinator | None = None,
        *,
        critical: Iterable[str] = CRITICAL_RESOURCES,
    ) -> None:
        self._credentials = credentials
        self._fetchers = {
            name: fetchers[name]
            for name in (*INITIAL_RESOURCES, *fetchers)
            if name in fetchers
        }
        self._logout = logout
        self.state = LoadState(critical=frozenset(critical))
        self.data: dict[str, Any] = {}
        self._task: asyncio.Task[LoadReport] | None = None
        self._report: LoadReport | None = None
        if logout is not None:
            logout.add_listener(self._on_logout)

    @classmethod
    def for_client(
        cls,
        credentials: CredentialProvider,
        resources: ResourcesClient,
        logout: LogoutCoordinator | None = None,
    ) -> DataLoadOrchestrator:
        return cls(credentials, default_fetchers(resources), logout)

    @property
    def report(self) -> LoadReport | None:
        return self._report

    @property
    def started(self) -> bool:
        return self._task is not None

    async def load_all(self) -> LoadReport:
        """Load every resource once.  Repeat calls join or reuse the first run."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._load())
        else:
            logger.debug("Initial load already started; not issuing new fetches")
        return await asyncio.shield(self._task)

    def reset(self) -> None:
        """Forget the previous run so ``load_all`` fetches again."""
        if self._task is not None and not self._task.done():
            raise RuntimeError("Cannot reset while the initial load is in progress")
        self._task = None
        self._report = None
        self.state.reset()
        self.data.clear()

    async def retry(self) -> LoadReport:
        """Manual retry after a failed or partial load."""
        if self._task is not None and not self._task.done():
            return await asyncio.shield(self._task)
        self.reset()
        return await self.load_all()

    def _on_logout(self, event: LogoutEvent) -> None:
        if self._task is not None and not self._task.done():
            # Responses still in flight write into state that is about to be discarded.
            self._task = None
            self._report = None
            self.state = LoadState(critical=self.state.critical)
            self.data = {}
        else:
            self.reset()

    # -- internals ----------------------------------------------------------

    async def _load(self) -> LoadReport:
        logger.info("Starting initial data load (%d resources)", len(self._fetchers))
        for name in self._fetchers:
            self.state.resources[name] = ResourceState(loading=True)

        try:
            credential = await self._credentials.get_credential()
        except CredentialError as exc:
            logger.error("Initial load aborted: %s", exc)
            for rs in self.state.resources.values():
                rs.loading = False
                rs.error = str(exc)
            report = LoadReport(
                status="failed",
                action="sign_out",
                failures={name: str(exc) for name in self._fetchers},
                message=f"Failed to load critical data: {exc}",
            )
            self._report = report
            return report

        names = list(self._fetchers)
        state, data = self.state, self.data
        results = await asyncio.gather(
            *(self._fetch_one(name, credential.token, state, data) for name in names),
            return_exceptions=True,
        )
        for name, result in zip(names, results):
            if isinstance(result, BaseException) and not isinstance(result, APIError):
                # _fetch_one already recorded APIErrors; anything else is unexpected.
                logger.error("Fetch of %s raised unexpectedly: %r", name, result)
                state.resources[name] = ResourceState(error=str(result) or type(result).__name__)

        report = self._build_report(state)
        if state is self.state:
            self._report = report
        logger.info("Initial data load finished: %s", report.status)
        return report

    async def _fetch_one(
        self,
        name: str,
        token: str,
        state: LoadState,
        data: dict[str, Any],
    ) -> None:
        resource = state.resources.setdefault(name, ResourceState(loading=True))
        try:
            result = check_result(await self._fetchers[name](token))
        except APIError as exc:
            resource.error = str(exc)
            resource.classification = handle_failure(exc, self._logout)
            logger.warning("Failed to load %s: %s", name, exc)
            raise
        finally:
            resource.loading = False
        data[name] = result.get("data")
        logger.debug("Loaded %s", name)

    def _build_report(self, state: LoadState) -> LoadReport:
        failures = {
            name: r.error for name, r in state.resources.items() if r.error is not None
        }
        critical = state.critical_failures
        if critical:
            session_ended = any(
                state.resources[name].classification is not None
                and state.resources[name].classification.forces_logout
                for name in critical
            )
            summary = ", ".join(f"{name}: {failures[name]}" for name in critical)
            return LoadReport(
                status="failed",
                action="sign_out" if session_ended else "retry",
                failures=failures,
                message=f"Failed to load critical data: {summary}",
            )
        if failures:
            return LoadReport(
                status="partial",
                partial_data=True,
                failures=failures,
                message="Some data could not be loaded",
            )
        return LoadReport(status="success")
