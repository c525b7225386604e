from __future__ import annotations

import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.context import request_id_var
from ..observability.logging import get_logger


log = get_logger("http")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds one request id per HTTP call (inbound X-Request-Id or a new UUIDv4)
    to request.state and the logging contextvar, echoes it on the response,
    and logs one `http_request_completed` line with the status and duration.
    """

    header_name = "X-Request-Id"

    async def dispatch(self, request: Request, call_next):
        inbound = str(request.headers.get(self.header_name) or "").strip()
        request_id = inbound[:128] or str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            log.info(
                "http_request_completed",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            return response
        finally:
            request_id_var.reset(token)
