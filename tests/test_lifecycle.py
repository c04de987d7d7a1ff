"""End-to-end tests for lifecycle.py and client.py against a mocked Resource API."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

import client
from _constants import KEY_BOOTSTRAP_ERROR_MARKER, KEY_CACHED_SESSION_ID
from bootstrap import BootstrapState
from clients import APIClientRegistry
from conftest import BASE_URL, SUBJECT_ID, FakeIdentityProvider, make_token
from lifecycle import SessionLifecycle, StaticIdentityProvider
from storage import MemoryStore

SESSIONS_URL = f"{BASE_URL}/users/{SUBJECT_ID}/sessions"
LOGOUT_URL = f"{BASE_URL}/users/{SUBJECT_ID}/logout"


def _mock_resources(**overrides: httpx.Response) -> None:
    responses = {
        "users/me": httpx.Response(200, json={"id": SUBJECT_ID}),
        "clients": httpx.Response(200, json=[{"id": "c1"}]),
        "projects": httpx.Response(200, json={"items": [{"id": "p1"}]}),
        "time-entries": httpx.Response(200, json=[]),
        "users": httpx.Response(200, json=[]),
        "invoices": httpx.Response(200, json=[]),
    }
    responses.update(overrides)
    for path, response in responses.items():
        respx.get(f"{BASE_URL}/{path}").mock(return_value=response)


# =========================================================================
# SessionLifecycle
# =========================================================================


class TestSessionLifecycle:
    @respx.mock
    async def test_happy_path(self, registry: APIClientRegistry, store: MemoryStore) -> None:
        respx.post(SESSIONS_URL).mock(
            return_value=httpx.Response(201, json={"success": True, "data": {"id": "sess-1"}})
        )
        _mock_resources()
        identity = FakeIdentityProvider(access_token=make_token())
        lifecycle = SessionLifecycle(identity, registry, store, AsyncMock())

        result = await lifecycle.start()
        assert result.stage == "loaded"
        assert result.load is not None and result.load.status == "success"
        assert store.get(KEY_CACHED_SESSION_ID) == "sess-1"
        assert lifecycle.loader.data["projects"] == [{"id": "p1"}]

    async def test_no_credential_is_signed_out(
        self, registry: APIClientRegistry, store: MemoryStore
    ) -> None:
        lifecycle = SessionLifecycle(FakeIdentityProvider(), registry, store, AsyncMock())
        result = await lifecycle.start()
        assert result.stage == "signed_out"
        assert result.error

    async def test_malformed_credential_is_signed_out(
        self, registry: APIClientRegistry, store: MemoryStore
    ) -> None:
        identity = FakeIdentityProvider(access_token="not-a-jwt")
        result = await SessionLifecycle(identity, registry, store, AsyncMock()).start()
        assert result.stage == "signed_out"

    @respx.mock
    async def test_deadlock_then_retry_recovers(
        self, registry: APIClientRegistry, store: MemoryStore
    ) -> None:
        create = respx.post(SESSIONS_URL).mock(
            return_value=httpx.Response(403, json={"message": "No active sessions found"})
        )
        respx.get(SESSIONS_URL).mock(return_value=httpx.Response(200, json=[]))
        _mock_resources()
        identity = FakeIdentityProvider(access_token=make_token())
        reload = AsyncMock()
        lifecycle = SessionLifecycle(identity, registry, store, reload)

        result = await lifecycle.start()
        assert result.stage == "bootstrap"
        assert result.bootstrap is not None and result.bootstrap.requires_manual_resolution
        assert store.get(KEY_BOOTSTRAP_ERROR_MARKER) is not None
        assert not lifecycle.logout_coordinator.in_progress
        reload.assert_not_awaited()

        create.mock(
            return_value=httpx.Response(201, json={"success": True, "data": {"id": "sess-7"}})
        )
        result = await lifecycle.retry_bootstrap()
        assert result.stage == "loaded"
        assert store.get(KEY_BOOTSTRAP_ERROR_MARKER) is None
        assert True in identity.refresh_calls

    @respx.mock
    async def test_restart_with_marker_makes_no_request(
        self, registry: APIClientRegistry
    ) -> None:
        store = MemoryStore(
            {
                KEY_BOOTSTRAP_ERROR_MARKER: json.dumps(
                    {"success": False, "error": "x", "requiresManualResolution": True}
                )
            }
        )
        create = respx.post(SESSIONS_URL).mock(return_value=httpx.Response(201, json={"id": "s"}))
        identity = FakeIdentityProvider(access_token=make_token())
        lifecycle = SessionLifecycle(identity, registry, store, AsyncMock())
        result = await lifecycle.start()
        assert result.stage == "bootstrap"
        assert lifecycle.bootstrap.state is BootstrapState.FAILED_MANUAL_RESOLUTION
        assert not create.called

    @respx.mock
    async def test_transient_bootstrap_failure_still_loads(
        self, registry: APIClientRegistry, store: MemoryStore
    ) -> None:
        respx.post(SESSIONS_URL).mock(
            return_value=httpx.Response(503, json={"message": "Service Unavailable"})
        )
        _mock_resources()
        identity = FakeIdentityProvider(access_token=make_token())
        reload = AsyncMock()
        lifecycle = SessionLifecycle(identity, registry, store, reload)

        result = await lifecycle.start()
        assert lifecycle.bootstrap.state is BootstrapState.FAILED_RETRYABLE
        assert result.stage == "loaded"
        assert result.bootstrap is not None and not result.bootstrap.success
        assert result.error == result.bootstrap.error
        assert result.load is not None and result.load.status == "success"
        assert lifecycle.loader.data["current_user"] == {"id": SUBJECT_ID}
        assert not lifecycle.logout_coordinator.in_progress
        reload.assert_not_awaited()

    @respx.mock
    async def test_expired_credential_at_bootstrap_skips_load(
        self, registry: APIClientRegistry, store: MemoryStore
    ) -> None:
        respx.post(SESSIONS_URL).mock(
            return_value=httpx.Response(401, json={"message": "Token expired"})
        )
        respx.post(LOGOUT_URL).mock(return_value=httpx.Response(200, json={}))
        clients_route = respx.get(f"{BASE_URL}/clients").mock(
            return_value=httpx.Response(200, json=[])
        )
        identity = FakeIdentityProvider(access_token=make_token())
        lifecycle = SessionLifecycle(identity, registry, store, AsyncMock())

        result = await lifecycle.start()
        assert result.stage == "bootstrap"
        assert result.load is None
        assert not clients_route.called
        await lifecycle.logout_coordinator.completed.wait()

    @respx.mock
    async def test_user_logout_from_recovery_screen(
        self, registry: APIClientRegistry, store: MemoryStore
    ) -> None:
        respx.post(SESSIONS_URL).mock(
            return_value=httpx.Response(403, json={"message": "No active sessions found"})
        )
        respx.get(SESSIONS_URL).mock(return_value=httpx.Response(403, json={}))
        logout_route = respx.post(LOGOUT_URL).mock(return_value=httpx.Response(200, json={}))
        identity = FakeIdentityProvider(access_token=make_token())
        reload = AsyncMock()
        lifecycle = SessionLifecycle(identity, registry, store, reload)
        await lifecycle.start()

        await lifecycle.logout()
        assert lifecycle.logout_coordinator.completed.is_set()
        assert logout_route.called
        assert store.get(KEY_BOOTSTRAP_ERROR_MARKER) is None
        assert identity.sign_out_calls == 1
        reload.assert_awaited_once()

    @respx.mock
    async def test_expired_credential_during_load_logs_out_once(
        self, registry: APIClientRegistry, store: MemoryStore
    ) -> None:
        respx.post(SESSIONS_URL).mock(
            return_value=httpx.Response(201, json={"success": True, "data": {"id": "sess-1"}})
        )
        logout_route = respx.post(LOGOUT_URL).mock(return_value=httpx.Response(200, json={}))
        expired = httpx.Response(401, json={"message": "Token expired"})
        _mock_resources(**{"users/me": expired, "clients": expired, "projects": expired})
        identity = FakeIdentityProvider(access_token=make_token())
        reload = AsyncMock()
        lifecycle = SessionLifecycle(identity, registry, store, reload)

        result = await lifecycle.start()
        assert result.load is not None
        assert result.load.action == "sign_out"
        await lifecycle.logout_coordinator.completed.wait()
        assert logout_route.call_count == 1
        assert identity.sign_out_calls == 1
        reload.assert_awaited_once()
        assert store.get(KEY_CACHED_SESSION_ID) is None


# =========================================================================
# StaticIdentityProvider
# =========================================================================


class TestStaticIdentityProvider:
    async def test_returns_tokens_until_sign_out(self) -> None:
        provider = StaticIdentityProvider(access_token="a", id_token="")
        tokens = await provider.get_current_credential()
        assert tokens.access_token == "a"
        assert tokens.id_token is None
        await provider.sign_out()
        assert (await provider.get_current_credential()).access_token is None

    async def test_sign_in_not_supported(self) -> None:
        with pytest.raises(NotImplementedError):
            await StaticIdentityProvider().sign_in("user", "pw")


# =========================================================================
# client.run
# =========================================================================


class TestRun:
    @pytest.fixture(autouse=True)
    def _config(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
        path = tmp_path / "session.json"
        monkeypatch.setattr(client, "API_BASE_URL", BASE_URL)
        monkeypatch.setattr(client, "STORAGE_PATH", str(path))
        monkeypatch.delenv("TIMETRACK_ID_TOKEN", raising=False)
        return path

    async def test_signed_out_exit_code(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TIMETRACK_ACCESS_TOKEN", raising=False)
        assert await client.run() == 2

    @respx.mock
    async def test_loaded_exit_code(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("TIMETRACK_ACCESS_TOKEN", make_token())
        respx.post(SESSIONS_URL).mock(
            return_value=httpx.Response(201, json={"success": True, "data": {"id": "sess-1"}})
        )
        _mock_resources()
        assert await client.run() == 0
        printed = json.loads(capsys.readouterr().out)
        assert printed["stage"] == "loaded"
        assert printed["load"]["status"] == "success"

    @respx.mock
    async def test_retryable_bootstrap_failure_exit_code(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("TIMETRACK_ACCESS_TOKEN", make_token())
        respx.post(SESSIONS_URL).mock(return_value=httpx.Response(502, text="Bad Gateway"))
        _mock_resources()
        assert await client.run() == 1
        printed = json.loads(capsys.readouterr().out)
        assert printed["stage"] == "loaded"
        assert printed["bootstrap"]["success"] is False

    @respx.mock
    async def test_forced_logout_exit_code(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TIMETRACK_ACCESS_TOKEN", make_token())
        respx.post(SESSIONS_URL).mock(
            return_value=httpx.Response(401, json={"message": "Token expired"})
        )
        respx.post(LOGOUT_URL).mock(return_value=httpx.Response(200, json={}))
        assert await client.run() == 3

    def test_main_rejects_insecure_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(client, "API_BASE_URL", "http://remote-host/v1")
        with pytest.raises(SystemExit) as exc_info:
            client.main()
        assert exc_info.value.code == 1
