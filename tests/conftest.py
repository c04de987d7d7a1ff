"""Pytest configuration for session lifecycle tests.

Sets environment variables before any test module imports client.py, which
reads its configuration at module level.
"""

from __future__ import annotations

import os
import time
from collections.abc import AsyncGenerator
from typing import Any

os.environ.setdefault("TIMETRACK_API_BASE_URL", "http://127.0.0.1:8000/v1")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import jwt
import pytest
import pytest_asyncio

from clients import APIClientRegistry
from clients._base import BaseAPIClient
from credentials import CredentialProvider, TokenSet
from storage import MemoryStore

BASE_URL = "https://api.example.com/v1"
SUBJECT_ID = "3f2a9c1e-0000-4000-8000-00000000abcd"

# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


def make_token(
    *,
    sub: str | None = SUBJECT_ID,
    expires_in: int = 3600,
    token_use: str = "access",
    **claims: Any,
) -> str:
    """Build an unsigned-looking JWT with the claims the identity provider issues."""
    payload: dict[str, Any] = {
        "exp": int(time.time()) + expires_in,
        "iat": int(time.time()),
        "token_use": token_use,
        **claims,
    }
    if sub is not None:
        payload["sub"] = sub
    return jwt.encode(payload, "test-signing-key-not-verified-locally", algorithm="HS256")


class FakeIdentityProvider:
    """Identity provider double that records calls."""

    def __init__(
        self,
        access_token: str | None = None,
        id_token: str | None = None,
        *,
        refreshed: TokenSet | None = None,
        fail_sign_out: bool = False,
    ) -> None:
        self.tokens = TokenSet(access_token=access_token, id_token=id_token)
        self.refreshed = refreshed
        self.fail_sign_out = fail_sign_out
        self.refresh_calls: list[bool] = []
        self.sign_out_calls = 0

    async def sign_in(self, identifier: str, password: str) -> None:
        self.tokens = TokenSet(access_token=make_token())

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.fail_sign_out:
            raise RuntimeError("identity provider unreachable")
        self.tokens = TokenSet()

    async def get_current_credential(self, force_refresh: bool = False) -> TokenSet:
        self.refresh_calls.append(force_refresh)
        if force_refresh and self.refreshed is not None:
            self.tokens = self.refreshed
        return self.tokens


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider(access_token=make_token())


@pytest.fixture
def credentials(identity: FakeIdentityProvider) -> CredentialProvider:
    return CredentialProvider(identity)


@pytest_asyncio.fixture
async def registry() -> AsyncGenerator[APIClientRegistry, None]:
    r = APIClientRegistry(BaseAPIClient(BASE_URL))
    yield r
    await r.close()
