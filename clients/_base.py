"""Base Resource API client and HTTP transport.

Provides ``BaseAPIClient`` -- the stateless async HTTP client for the
time-tracking Resource API.  Every request method takes ``token: str`` as the
first positional argument; it is forwarded as ``Authorization: Bearer <value>``.

Transport rules:
    - ``_request`` returns result dicts for 4xx/5xx and transport errors --
      it never raises.  Error dicts carry a :class:`TransportFailure` built
      at this boundary; nothing past ``_auth.check_result`` sees raw httpx
      objects.
    - ``httpx.AsyncClient(follow_redirects=False)``.
    - Constructor rejects non-HTTPS base_url for non-localhost targets.
"""

from __future__ import annotations

import ipaddress
import json
import logging
from typing import Any
from urllib.parse import quote, urlparse

import httpx

from classifier import failure_from_exception, failure_from_response

__all__ = ["BaseAPIClient", "user_path"]

logger = logging.getLogger("timetrack.client")


def user_path(subject_id: str, *parts: str) -> str:
    """Build ``users/{subject_id}/...`` with the subject id URL-quoted."""
    if not subject_id or not subject_id.strip():
        raise ValueError("subject_id must not be empty")
    segments = ["users", quote(subject_id.strip(), safe=""), *parts]
    return "/".join(segments)


class BaseAPIClient:
    """Stateless async HTTP client for the Resource API."""

    # -- construction -------------------------------------------------------

    def __init__(
        self,
        base_url: str,
        *,
        user_agent: str = "timetrack-desktop",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        parsed = urlparse(base_url)
        host = (parsed.hostname or "").lower()

        if parsed.scheme != "https" and not self._is_loopback(host):
            raise ValueError(
                f"Non-HTTPS API base URL {base_url!r}: plain HTTP is loopback-only"
            )

        self._base_url: str = base_url.rstrip("/")
        self._user_agent: str = user_agent
        self._http: httpx.AsyncClient = httpx.AsyncClient(
            follow_redirects=False,
            timeout=httpx.Timeout(connect=5.0, read=30.0, write=30.0, pool=5.0),
            verify=True,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def user_agent(self) -> str:
        return self._user_agent

    async def close(self) -> None:
        """Release pooled connections."""
        await self._http.aclose()

    async def __aenter__(self) -> BaseAPIClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @staticmethod
    def _is_loopback(host: str) -> bool:
        """True for localhost and any 127/8 or ::1 literal."""
        if host == "localhost":
            return True
        stripped = host.strip("[]")
        try:
            return ipaddress.ip_address(stripped).is_loopback
        except ValueError:
            return False

    # -- generic request helper ---------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        token: str,
        *,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request.  Returns a result dict; never raises."""
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        headers: dict[str, str] = {
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
            "User-Agent": self._user_agent,
        }
        if data is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = await self._http.request(
                method,
                url,
                json=data,
                params=params,
                headers=headers,
            )
        except httpx.TransportError as exc:
            logger.warning("API %s %s transport error: %s", method, endpoint, exc)
            return {
                "status": "error",
                "message": "Service temporarily unavailable.",
                "status_code": None,
                "failure": failure_from_exception(exc),
            }
        except Exception as exc:
            logger.warning("API %s %s unexpected error: %s", method, endpoint, exc)
            return {
                "status": "error",
                "message": "An unexpected error occurred. Please try again.",
                "status_code": None,
                "failure": failure_from_exception(exc),
            }

        try:
            response_data = response.json()
        except (json.JSONDecodeError, ValueError):
            response_data = {"text": response.text[:500]} if response.text else None

        rejected = isinstance(response_data, dict) and response_data.get("success") is False
        if response.status_code >= 400 or rejected:
            logger.warning(
                "API %s %s returned status=%d",
                method,
                endpoint,
                response.status_code,
            )
            failure = failure_from_response(response.status_code, response_data)
            return {
                "status": "error",
                "message": failure.message,
                "status_code": response.status_code,
                "failure": failure,
            }

        return {"status": "success", "data": self._unwrap_envelope(response_data)}

    # -- static helpers (exposed for testing) --------------------------------

    @staticmethod
    def _unwrap_envelope(data: Any) -> Any:
        """Strip the ``{"success": true, "data": ...}`` envelope some endpoints use."""
        if isinstance(data, dict) and data.get("success") is True and "data" in data:
            return data["data"]
        return data

    @staticmethod
    def _extract_items(data: Any) -> list[dict[str, Any]]:
        """Normalise a list response into a flat list of dicts.

        Handles a plain ``list`` and paginated envelopes such as
        ``{"items": [...], "pagination": {...}}``.
        """
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        if isinstance(data, dict):
            for key in ("items", "results", "data"):
                val = data.get(key)
                if isinstance(val, list):
                    return [item for item in val if isinstance(item, dict)]
        return []
