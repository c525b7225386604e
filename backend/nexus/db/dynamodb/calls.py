from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Caller-owned retry policy. The default makes exactly one attempt."""

    max_attempts: int = 1
    base_delay_s: float = 0.05
    max_delay_s: float = 1.5


_THROTTLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
    "TransactionConflictException",
}

# code -> (error class, message, retryable)
_CODE_MAP: dict[str, tuple[type[DdbError], str, bool]] = {
    "ConditionalCheckFailedException": (DdbConflict, "DynamoDB conditional check failed", False),
    "ValidationException": (DdbValidation, "DynamoDB request validation failed", False),
    "ParamValidationError": (DdbValidation, "DynamoDB request validation failed", False),
    "AccessDeniedException": (DdbUnavailable, "DynamoDB access denied", False),
    "UnrecognizedClientException": (DdbUnavailable, "DynamoDB access denied", False),
    "ResourceNotFoundException": (DdbUnavailable, "DynamoDB table not found", False),
}


def _sleep_backoff(policy: RetryPolicy, attempt: int) -> None:
    # Full jitter exponential backoff.
    exp = min(policy.max_delay_s, policy.base_delay_s * (2 ** max(0, attempt - 1)))
    time.sleep(random.random() * exp)


def _client_error_field(e: ClientError, *path: str) -> Any:
    cur: Any = e.response or {}
    for p in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(p)
    return cur


def _transaction_reasons(e: ClientError) -> list[str]:
    reasons = _client_error_field(e, "CancellationReasons") or []
    return [str((r or {}).get("Code") or "") for r in reasons if isinstance(r, dict)]


def map_store_error(
    *,
    operation: str,
    table_name: str | None,
    key: dict[str, Any] | None,
    exc: Exception,
) -> DdbError:
    if isinstance(exc, DdbError):
        return exc

    ctx: dict[str, Any] = {"operation": operation, "table_name": table_name, "key": key, "cause": exc}

    if isinstance(exc, ClientError):
        code = str(_client_error_field(exc, "Error", "Code") or "")
        ctx["aws_request_id"] = _client_error_field(exc, "ResponseMetadata", "RequestId")

        if code == "TransactionCanceledException":
            reasons = _transaction_reasons(exc)
            if "ConditionalCheckFailed" in reasons:
                return DdbConflict(message="DynamoDB transaction condition failed", retryable=False, **ctx)
            if "TransactionConflict" in reasons:
                return DdbThrottled(message="DynamoDB transaction conflict", retryable=True, **ctx)

        if code in _CODE_MAP:
            cls, message, retryable = _CODE_MAP[code]
            return cls(message=message, retryable=retryable, **ctx)

        if code in _THROTTLE_CODES:
            return DdbThrottled(message="DynamoDB request throttled or unavailable", retryable=True, **ctx)

        return DdbInternal(message=f"DynamoDB request failed ({code or 'ClientError'})", **ctx)

    if isinstance(exc, BotoCoreError):
        return DdbUnavailable(message="DynamoDB client error", retryable=True, **ctx)

    return DdbInternal(message="Unexpected DynamoDB error", **ctx)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    policy = retry_policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            mapped = map_store_error(operation=operation, table_name=table_name, key=key, exc=e)
            # Never retry validation/conflict errors.
            if not mapped.retryable or attempt >= attempts:
                raise mapped from e
            _sleep_backoff(policy, attempt)

    raise DdbInternal(message="DynamoDB request failed", operation=operation, table_name=table_name, key=key)
