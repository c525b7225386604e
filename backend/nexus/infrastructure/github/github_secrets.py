from __future__ import annotations

import json
import time
from typing import Any

import boto3

from ...observability.logging import get_logger
from ...settings import Settings


log = get_logger("github_secrets")

_CACHE_TTL_SECONDS = 60
_cache: dict[str, tuple[float, dict[str, Any] | None]] = {}


def get_github_secret(settings: Settings, *, force_refresh: bool = False) -> dict[str, Any] | None:
    arn = str(settings.github_secret_arn or "").strip()
    if not arn:
        return None

    now = time.time()
    cached = _cache.get(arn)
    if not force_refresh and cached is not None and (now - cached[0]) < _CACHE_TTL_SECONDS:
        return cached[1]

    value: dict[str, Any] | None = None
    try:
        sm = boto3.client("secretsmanager", region_name=settings.aws_region)
        raw = sm.get_secret_value(SecretId=arn).get("SecretString")
        if isinstance(raw, str) and raw.strip():
            obj = json.loads(raw)
            value = obj if isinstance(obj, dict) else None
    except Exception as e:  # noqa: BLE001
        # No secret means unauthenticated access.
        log.warning("github_secret_fetch_failed", error=str(e) or "unknown_error")
        return None

    _cache[arn] = (now, value)
    return value


def resolve_github_token(settings: Settings) -> str | None:
    """GITHUB_TOKEN wins; otherwise look inside the Secrets Manager secret."""
    direct = str(settings.github_token or "").strip()
    if direct:
        return direct
    sec = get_github_secret(settings) or {}
    for k in ("GITHUB_TOKEN", "GH_TOKEN"):
        v = str(sec.get(k) or "").strip()
        if v:
            return v
    return None
