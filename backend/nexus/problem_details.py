"""
RFC 7807 problem+json rendering for every error the API returns.

Problem `type` is `about:blank` for plain HTTP errors and a stable
`urn:arbitrage-nexus:problem:<slug>` for domain and storage errors, so
clients can branch on it without parsing `detail`.
"""

from __future__ import annotations

import re
from typing import Any

from fastapi import Request
from fastapi.responses import ORJSONResponse

from .observability.context import get_correlation_id
from .settings import get_settings

PROBLEM_JSON = "application/problem+json"
PROBLEM_URN_PREFIX = "urn:arbitrage-nexus:problem:"

_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    422: "Unprocessable Entity",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def _default_title(status_code: int) -> str:
    if status_code in _TITLES:
        return _TITLES[status_code]
    return "Internal Server Error" if status_code >= 500 else "Error"


def problem_type(title: str | None) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", str(title or "").lower()).strip("-")
    return PROBLEM_URN_PREFIX + slug if slug else "about:blank"


def _request_id(request: Request) -> str | None:
    rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
    return str(rid) if rid else None


def problem_payload(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
    typed: bool = False,
) -> dict[str, Any]:
    resolved_title = title or _default_title(int(status_code))
    payload: dict[str, Any] = {
        "type": problem_type(resolved_title) if typed else "about:blank",
        "title": resolved_title,
        "status": int(status_code),
        "instance": request.url.path,
    }
    if detail:
        payload["detail"] = str(detail)

    rid = _request_id(request)
    if rid:
        payload["requestId"] = rid
    # Set when the error escaped a pipeline run.
    cid = get_correlation_id()
    if cid:
        payload["correlationId"] = cid
    if errors:
        payload["errors"] = errors
    if extensions:
        # Extension members live in one namespace to avoid clashing with reserved keys.
        payload["extensions"] = extensions
    return payload


def problem_response(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
    typed: bool = False,
) -> ORJSONResponse:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    # Never leak internal details in production for server errors.
    if int(status_code) >= 500 and settings.is_production:
        detail = None
        extensions = None

    return ORJSONResponse(
        status_code=int(status_code),
        content=problem_payload(
            request=request,
            status_code=int(status_code),
            title=title,
            detail=detail,
            errors=errors,
            extensions=extensions,
            typed=typed,
        ),
        media_type=PROBLEM_JSON,
    )
