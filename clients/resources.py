"""Domain client for the initial-load resources.

Uses composition: holds a reference to :class:`BaseAPIClient` for HTTP
transport.  List methods normalise paginated envelopes into plain lists.
"""

from __future__ import annotations

from typing import Any

from clients._base import BaseAPIClient

__all__ = ["ResourcesClient"]


class ResourcesClient:
    """Read access to profile, reference lists and records."""

    def __init__(self, base: BaseAPIClient) -> None:
        self._base = base

    async def _list(
        self,
        endpoint: str,
        token: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        result = await self._base._request("GET", endpoint, token, params=params or None)
        if result["status"] != "success":
            return result
        return {"status": "success", "data": BaseAPIClient._extract_items(result.get("data"))}

    async def get_current_user(self, token: str) -> dict[str, Any]:
        """Get the authenticated user's profile."""
        return await self._base._request("GET", "users/me", token)

    async def list_clients(self, token: str) -> dict[str, Any]:
        return await self._list("clients", token)

    async def list_projects(
        self,
        token: str,
        client_id: str | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if client_id is not None:
            params["clientId"] = client_id
        if status is not None:
            params["status"] = status
        return await self._list("projects", token, params)

    async def list_time_entries(
        self,
        token: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if start_date is not None:
            params["startDate"] = start_date
        if end_date is not None:
            params["endDate"] = end_date
        return await self._list("time-entries", token, params)

    async def list_users(self, token: str) -> dict[str, Any]:
        return await self._list("users", token)

    async def list_invoices(self, token: str) -> dict[str, Any]:
        return await self._list("invoices", token)
