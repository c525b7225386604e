from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from botocore.config import Config

from ...settings import get_settings


# The orchestration core never retries on its own: botocore makes a single
# attempt and callers that want backoff pass an explicit RetryPolicy to ddb_call.
_BOTO_CONFIG = Config(
    retries={"total_max_attempts": 1, "mode": "standard"},
    connect_timeout=2,
    read_timeout=10,
)


def _connection_kwargs() -> dict[str, Any]:
    s = get_settings()
    kwargs: dict[str, Any] = {"region_name": s.aws_region, "config": _BOTO_CONFIG}
    # DDB_ENDPOINT_URL points at DynamoDB Local during development.
    if s.ddb_endpoint_url:
        kwargs["endpoint_url"] = s.ddb_endpoint_url
    return kwargs


@lru_cache(maxsize=1)
def dynamodb_resource():
    return boto3.resource("dynamodb", **_connection_kwargs())


@lru_cache(maxsize=1)
def dynamodb_client():
    return boto3.client("dynamodb", **_connection_kwargs())


def table_resource(table_name: str):
    return dynamodb_resource().Table(table_name)
