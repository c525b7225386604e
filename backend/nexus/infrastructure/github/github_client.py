"""
Thin adapter over the GitHub REST API (the repository host).

Failure policy: transport errors, HTTP errors and rejected credentials are
logged and surfaced as an absent/empty result. Nothing here raises to the
caller and nothing is retried; every request is bounded by the client timeout.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any
from urllib.parse import quote

import httpx

from ...domain.models import ProvisionResult
from ...observability.logging import get_logger
from ...settings import Settings
from .github_secrets import resolve_github_token


log = get_logger("github_client")

_USER_AGENT = "arbitrage-nexus-orchestrator"


class GitHubClient:
    def __init__(
        self,
        *,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._token = str(token or "").strip() or None
        self._base_url = str(base_url or "https://api.github.com").rstrip("/")
        self._timeout = float(timeout)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> "GitHubClient":
        token = resolve_github_token(settings)
        if not token:
            log.warning("github_token_missing", detail="falling back to unauthenticated public access")
        return cls(
            token=token,
            base_url=settings.github_api_url,
            timeout=settings.github_timeout_seconds,
            transport=transport,
        )

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    # --- transport ---

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    def _headers(self) -> dict[str, str]:
        h = {
            "Accept": "application/vnd.github+json",
            "User-Agent": _USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            h["Authorization"] = f"Bearer {self._token}"
        return h

    def _request(self, method: str, url: str, *, params: dict[str, Any] | None = None, json_body: Any = None) -> dict[str, Any]:
        try:
            with self._client() as c:
                resp = c.request(method, url, headers=self._headers(), params=params or None, json=json_body)
        except httpx.HTTPError as e:
            log.warning("github_transport_failed", method=method, url=url, error=str(e) or type(e).__name__)
            return {"ok": False, "error": "transport_failure"}

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}

        if resp.status_code >= 400:
            # GitHub uses `message`/`documentation_url`.
            message = data.get("message") if isinstance(data, dict) else None
            if resp.status_code in (401, 403):
                log.warning("github_credentials_rejected", method=method, url=url, status=resp.status_code)
            elif resp.status_code != 404:
                log.warning("github_request_failed", method=method, url=url, status=resp.status_code, error=message)
            return {"ok": False, "status": resp.status_code, "error": message or "github_error"}

        if not isinstance(data, (dict, list)):
            return {"ok": False, "status": resp.status_code, "error": "invalid_response"}
        return {"ok": True, "data": data}

    @staticmethod
    def _contents_url(owner: str, repo: str, path: str) -> str:
        p = quote(str(path or "").strip().strip("/"), safe="/")
        return f"/repos/{owner}/{repo}/contents/{p}" if p else f"/repos/{owner}/{repo}/contents"

    @staticmethod
    def _ref_params(branch: str | None) -> dict[str, Any]:
        # No ref means the repository's default branch.
        b = str(branch or "").strip()
        return {"ref": b} if b else {}

    # --- operations ---

    def fetch_file(self, owner: str, repo: str, path: str, branch: str | None = None) -> str | None:
        res = self._request("GET", self._contents_url(owner, repo, path), params=self._ref_params(branch))
        if not res.get("ok"):
            return None
        data = res.get("data")
        if not isinstance(data, dict) or data.get("type") not in (None, "file"):
            return None
        raw = data.get("content")
        if not isinstance(raw, str):
            return None
        if str(data.get("encoding") or "base64") != "base64":
            return raw
        try:
            return base64.b64decode(raw).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            log.warning("github_file_decode_failed", owner=owner, repo=repo, path=path, error=str(e))
            return None

    def list_directory(self, owner: str, repo: str, path: str, branch: str | None = None) -> list[str]:
        res = self._request("GET", self._contents_url(owner, repo, path), params=self._ref_params(branch))
        if not res.get("ok"):
            return []
        data = res.get("data")
        if not isinstance(data, list):
            return []
        return [str(e.get("name")) for e in data if isinstance(e, dict) and e.get("name")]

    def create_from_template(
        self,
        *,
        template_owner: str,
        template_repo: str,
        owner: str,
        name: str,
        description: str | None = None,
        private: bool = False,
    ) -> ProvisionResult:
        res = self._request(
            "POST",
            f"/repos/{template_owner}/{template_repo}/generate",
            json_body={
                "owner": owner,
                "name": name,
                "description": description or "",
                "private": bool(private),
            },
        )
        if not res.get("ok"):
            return ProvisionResult(ok=False, repo_name=name, error=str(res.get("error") or "github_error"))
        data = res.get("data") if isinstance(res.get("data"), dict) else {}
        return ProvisionResult(
            ok=True,
            repo_name=str(data.get("name") or name),
            repo_url=str(data.get("html_url") or f"https://github.com/{owner}/{name}"),
        )

    def list_org_repos(self, org: str, *, per_page: int = 100, max_pages: int = 10) -> list[dict[str, Any]]:
        size = max(1, min(100, int(per_page or 100)))
        out: list[dict[str, Any]] = []
        for page in range(1, max(1, int(max_pages)) + 1):
            res = self._request("GET", f"/orgs/{org}/repos", params={"per_page": size, "page": page})
            if not res.get("ok"):
                break
            rows = res.get("data")
            batch = [r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else []
            out.extend(batch)
            if len(batch) < size:
                break
        return out
