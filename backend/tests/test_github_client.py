from __future__ import annotations

import base64
import json

import httpx

from nexus.infrastructure.github.github_client import GitHubClient
from nexus.infrastructure.github.github_secrets import resolve_github_token
from nexus.settings import Settings


def _client(handler) -> GitHubClient:
    return GitHubClient(token="t0k", transport=httpx.MockTransport(handler))


def test_fetch_file_decodes_base64_content_and_passes_ref():
    seen: dict[str, object] = {}
    manifest = json.dumps([{"id": "t1", "name": "oil-refinery-template"}])

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["ref"] = request.url.params.get("ref")
        seen["auth"] = request.headers.get("authorization")
        encoded = base64.b64encode(manifest.encode()).decode()
        # GitHub wraps base64 content at 60 columns.
        wrapped = "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60))
        return httpx.Response(200, json={"type": "file", "encoding": "base64", "content": wrapped})

    out = _client(handler).fetch_file("Worldwidebro", "business-template-marketplace", "templates/manifest.json", "main")

    assert out == manifest
    assert seen["path"] == "/repos/Worldwidebro/business-template-marketplace/contents/templates/manifest.json"
    assert seen["ref"] == "main"
    assert seen["auth"] == "Bearer t0k"


def test_fetch_file_absent_or_directory_is_none():
    def not_found(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})

    def directory(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"name": "a.json", "type": "file"}])

    assert _client(not_found).fetch_file("o", "r", "missing.json") is None
    assert _client(directory).fetch_file("o", "r", "templates") is None


def test_transport_failures_surface_as_empty_results():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    c = _client(handler)
    assert c.fetch_file("o", "r", "x.json") is None
    assert c.list_directory("o", "r", "templates") == []
    assert c.list_org_repos("o") == []
    res = c.create_from_template(template_owner="o", template_repo="t", owner="o", name="venture-1")
    assert res.ok is False
    assert res.error == "transport_failure"


def test_rejected_credentials_are_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Bad credentials"})

    assert _client(handler).list_directory("o", "r", "templates") == []


def test_list_directory_returns_entry_names():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"name": "README.md"}, {"name": "src"}, {"type": "file"}])

    assert _client(handler).list_directory("o", "r", "templates/t1") == ["README.md", "src"]


def test_create_from_template_posts_generate_request():
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"name": "venture-1", "html_url": "https://github.com/Worldwidebro/venture-1"})

    res = _client(handler).create_from_template(
        template_owner="Worldwidebro",
        template_repo="business-template-marketplace",
        owner="Worldwidebro",
        name="venture-1",
        description="oil venture",
        private=True,
    )

    assert res.ok is True
    assert res.repo_url == "https://github.com/Worldwidebro/venture-1"
    assert seen["method"] == "POST"
    assert seen["path"] == "/repos/Worldwidebro/business-template-marketplace/generate"
    assert seen["body"] == {"owner": "Worldwidebro", "name": "venture-1", "description": "oil venture", "private": True}


def test_create_from_template_failure_is_a_result():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "Name already exists on this account"})

    res = _client(handler).create_from_template(template_owner="o", template_repo="t", owner="o", name="venture-1")
    assert res.ok is False
    assert res.error == "Name already exists on this account"


def test_list_org_repos_follows_pages():
    pages = {"1": [{"name": f"r{i}"} for i in range(2)], "2": [{"name": "r2"}]}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=pages.get(request.url.params.get("page"), []))

    repos = _client(handler).list_org_repos("Worldwidebro", per_page=2)
    assert [r["name"] for r in repos] == ["r0", "r1", "r2"]


def test_direct_token_wins_over_secret():
    settings = Settings(GITHUB_TOKEN=" ghp_direct ", GITHUB_SECRET_ARN="arn:aws:secretsmanager:us-east-1:1:secret:gh")
    assert resolve_github_token(settings) == "ghp_direct"
