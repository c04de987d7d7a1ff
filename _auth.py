"""Shared error-handling helpers for Resource API calls.

``check_result`` is the single point where an error dict from the transport
is classified.  ``handle_failure`` turns that classification into the one
allowed side effect: a logout request for session or credential failures.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from classifier import APIError, FailureClassification, TransportFailure, classify

if TYPE_CHECKING:
    from logout import LogoutCoordinator

logger = logging.getLogger("timetrack.session")

__all__ = ["check_result", "handle_failure"]


def check_result(result: dict[str, Any]) -> dict[str, Any]:
    """Raise APIError if a client returned an error dict."""
    if isinstance(result, dict) and result.get("status") == "error":
        failure = result.get("failure")
        if not isinstance(failure, TransportFailure):
            failure = TransportFailure(status=result.get("status_code"))
        raise APIError(failure, classify(failure))
    return result


def handle_failure(
    error: APIError,
    logout: LogoutCoordinator | None,
) -> FailureClassification:
    """Act on an already-classified failure and return its classification.

    Only CREDENTIAL_EXPIRED and SESSION_INVALID reach the logout coordinator.
    """
    classification = error.classification
    if classification.forces_logout:
        logger.info("API failure classified as %s; requesting logout", classification.value)
        if logout is not None:
            logout.request_logout(classification)
    elif classification is FailureClassification.PERMISSION_DENIED:
        logger.info("Permission denied (no logout): %s", error)
    else:
        logger.debug("Transient API failure: %s", error)
    return classification

