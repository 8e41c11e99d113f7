"""
API error taxonomy.

Every failure coming back from the API server is mapped once, at the client
boundary, onto one of these classes so reconcilers can branch on the kind of
failure instead of on HTTP status codes.
"""

from __future__ import annotations

import json
from typing import Any

from kubernetes.client.exceptions import ApiException


class ApiError(Exception):
    """Failure reported by the API server (or its transport)."""

    status: int = 0

    def __init__(self, message: str, status: int | None = None, reason: str = ""):
        super().__init__(message)
        if status is not None:
            self.status = status
        self.reason = reason


class NotFoundError(ApiError):
    status = 404


class AlreadyExistsError(ApiError):
    status = 409


class ConflictError(ApiError):
    """The write was based on a stale resourceVersion."""

    status = 409


class GoneError(ApiError):
    """The requested resourceVersion is too old to watch from."""

    status = 410


class InvalidError(ApiError):
    """The request was rejected as malformed; retrying will not help."""

    status = 422


class PermanentError(Exception):
    """A reconcile failure caused by bad input rather than cluster state."""


def _decode_body(body: Any) -> dict[str, Any]:
    if not body:
        return {}
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    try:
        decoded = json.loads(body)
    except (TypeError, ValueError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


def from_api_exception(exc: ApiException) -> ApiError:
    """Translate a kubernetes client exception into the local taxonomy."""
    status = exc.status or 0
    body = _decode_body(exc.body)
    reason = body.get("reason") or exc.reason or ""
    message = body.get("message") or str(exc.reason or exc)

    if status == 404:
        return NotFoundError(message, status, reason)
    if status == 409:
        if reason == "AlreadyExists":
            return AlreadyExistsError(message, status, reason)
        return ConflictError(message, status, reason)
    if status == 410:
        return GoneError(message, status, reason)
    if status in (400, 422):
        return InvalidError(message, status, reason)
    return ApiError(message, status, reason)
