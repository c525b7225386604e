from __future__ import annotations

from typing import Any, Protocol

from ...domain.models import ProvisionResult


class RepositoryClient(Protocol):
    """
    What the core needs from the repository host. `GitHubClient` is the real
    implementation; tests hand in in-memory fakes.
    """

    def fetch_file(self, owner: str, repo: str, path: str, branch: str | None = None) -> str | None: ...

    def list_directory(self, owner: str, repo: str, path: str, branch: str | None = None) -> list[str]: ...

    def create_from_template(
        self,
        *,
        template_owner: str,
        template_repo: str,
        owner: str,
        name: str,
        description: str | None = None,
        private: bool = False,
    ) -> ProvisionResult: ...

    def list_org_repos(self, org: str, *, per_page: int = 100, max_pages: int = 10) -> list[dict[str, Any]]: ...


__all__ = ["RepositoryClient"]
