"""
Error taxonomy for the orchestration core.

NotFound and ValidationFailed are expected outcomes: the core reports them as
`None`/`False` and only the HTTP layer raises them. TransportFailure is
swallowed at the repository-client boundary. MalformedData aborts a catalog
sync without touching prior state.
"""

from __future__ import annotations

from typing import Any


class NexusError(Exception):
    status_code = 500
    title = "Internal Server Error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class NotFound(NexusError):
    status_code = 404
    title = "Not Found"


class ValidationFailed(NexusError):
    status_code = 422
    title = "Validation Failed"


class TransportFailure(NexusError):
    status_code = 502
    title = "Bad Gateway"


class MalformedData(NexusError):
    status_code = 422
    title = "Malformed Data"


class InvalidArgument(NexusError):
    status_code = 400
    title = "Bad Request"
