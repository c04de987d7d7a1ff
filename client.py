"""Time-tracking desktop client -- session start-up runner.

Runs one start-up cycle (credential, session bootstrap, initial data load)
against the configured Resource API and prints the result as JSON.  The
desktop shell embeds :class:`lifecycle.SessionLifecycle` directly; this
module is the headless entry point used for diagnostics.
"""

from __future__ import annotations

import asyncio
import importlib.metadata
import json
import logging
import os

from clients import APIClientRegistry, BaseAPIClient
from lifecycle import SessionLifecycle, StaticIdentityProvider
from storage import JSONFileStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("timetrack.client")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

API_BASE_URL: str = os.environ.get("TIMETRACK_API_BASE_URL", "https://api.example.com/v1")
STORAGE_PATH: str = os.environ.get("TIMETRACK_STORAGE_PATH", "~/.timetrack/session.json")

try:
    _APP_VERSION: str = importlib.metadata.version("timetrack-session")
except importlib.metadata.PackageNotFoundError:
    _APP_VERSION = os.environ.get("APP_VERSION", "dev")

USER_AGENT: str = os.environ.get("TIMETRACK_USER_AGENT", f"timetrack-desktop/{_APP_VERSION}")


def configure_logging() -> None:
    """Configure logging; LOG_LEVEL env var overrides the default INFO level."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def run() -> int:
    """Run one start-up cycle.  Returns the process exit code."""
    identity = StaticIdentityProvider(
        access_token=os.environ.get("TIMETRACK_ACCESS_TOKEN"),
        id_token=os.environ.get("TIMETRACK_ID_TOKEN"),
    )
    registry = APIClientRegistry(BaseAPIClient(API_BASE_URL, user_agent=USER_AGENT))
    reloaded = asyncio.Event()

    def reload() -> None:
        # Headless: a "reload" ends the run.
        logger.info("Client reload requested")
        reloaded.set()

    lifecycle = SessionLifecycle(identity, registry, JSONFileStore(STORAGE_PATH), reload)
    try:
        result = await lifecycle.start()
        if lifecycle.logout_coordinator.in_progress:
            await lifecycle.logout_coordinator.completed.wait()
    finally:
        await registry.close()

    print(json.dumps(result.as_dict(), indent=2))
    if reloaded.is_set():
        return 3
    if result.stage == "loaded" and result.load is not None and result.load.ok:
        # A retryable bootstrap failure still loads, but is not a clean start.
        return 0 if result.error is None else 1
    return 1 if result.stage != "signed_out" else 2


def main() -> None:
    configure_logging()
    logger.info("timetrack session runner %s (api=%s)", _APP_VERSION, API_BASE_URL)
    try:
        code = asyncio.run(run())
    except ValueError as exc:
        logger.critical("Invalid configuration: %s", exc)
        raise SystemExit(1) from exc
    raise SystemExit(code)


if __name__ == "__main__":
    main()
