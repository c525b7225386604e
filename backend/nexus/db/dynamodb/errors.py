from __future__ import annotations

from typing import Any


class DdbError(Exception):
    """Base error for record-store operations (opportunities, ventures, events).

    Each subclass carries the HTTP status it renders as (see the handler in
    `nexus.main`). Inside the pipeline `DdbConflict` doubles as the
    optimistic-concurrency signal.
    """

    http_status = 500
    http_title = "Storage Error"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        table_name: str | None = None,
        key: dict[str, Any] | None = None,
        aws_request_id: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.table_name = table_name
        self.key = key
        self.aws_request_id = aws_request_id
        self.retryable = retryable
        self.cause = cause

    def __str__(self) -> str:
        return self.message

    def extensions(self) -> dict[str, Any]:
        out = {
            "operation": self.operation,
            "table": self.table_name,
            "key": self.key,
            "awsRequestId": self.aws_request_id,
            "retryable": bool(self.retryable),
        }
        return {k: v for k, v in out.items() if v is not None}


class DdbNotFound(DdbError):
    http_status = 404
    http_title = "Not Found"


class DdbConflict(DdbError):
    """A conditional write lost (item exists, or status moved underneath us)."""

    http_status = 409
    http_title = "Conflict"


class DdbValidation(DdbError):
    http_status = 400
    http_title = "Bad Request"


class DdbThrottled(DdbError):
    http_status = 503
    http_title = "Service Unavailable"


class DdbUnavailable(DdbError):
    http_status = 503
    http_title = "Service Unavailable"


class DdbInternal(DdbError):
    pass
