"""Client registry for Resource API domain clients.

One :class:`APIClientRegistry` is built per application session and handed
to :class:`lifecycle.SessionLifecycle`, which wires its clients into the
bootstrap, logout and load coordinators.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from clients._base import BaseAPIClient
from clients.resources import ResourcesClient
from clients.sessions import SessionRecord, SessionsClient

__all__ = [
    "APIClientRegistry",
    "BaseAPIClient",
    "ResourcesClient",
    "SessionRecord",
    "SessionsClient",
]


@dataclass
class APIClientRegistry:
    """Holds domain client instances. One registry per application session."""

    base: BaseAPIClient
    sessions: SessionsClient = field(init=False)
    resources: ResourcesClient = field(init=False)

    def __post_init__(self) -> None:
        self.sessions = SessionsClient(self.base)
        self.resources = ResourcesClient(self.base)

    async def close(self) -> None:
        await self.base.close()
