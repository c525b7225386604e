"""
Template catalog: an in-memory view of the marketplace manifest.

The descriptor set is owned here and only ever replaced wholesale by `sync()`.
A failed sync (manifest missing, unparseable, or any descriptor invalid)
leaves the previous set in place.

Matching is a heuristic, not a ranking: `find_match` returns the FIRST
descriptor (in manifest order) whose name contains the vertical,
case-insensitively. When several templates match, manifest order decides.
"""

from __future__ import annotations

import json
import threading
from typing import Any

from pydantic import ValidationError

from ...domain.models import SyncResult, TemplateDescriptor, now_iso
from ...errors import MalformedData, TransportFailure
from ...infrastructure.github import RepositoryClient
from ...observability.logging import get_logger


log = get_logger("template_catalog")


def parse_manifest(raw: str) -> tuple[TemplateDescriptor, ...]:
    """Parse a manifest document. Raises MalformedData on any problem."""
    try:
        doc: Any = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedData(f"manifest is not valid JSON: {e}") from e

    if isinstance(doc, dict):
        doc = doc.get("templates")
    if not isinstance(doc, list):
        raise MalformedData("manifest must be a list of templates or an object with a `templates` list")

    out: list[TemplateDescriptor] = []
    for idx, entry in enumerate(doc):
        if not isinstance(entry, dict):
            raise MalformedData(f"manifest entry {idx} is not an object")
        try:
            out.append(TemplateDescriptor.model_validate(entry))
        except ValidationError as e:
            raise MalformedData(
                f"manifest entry {idx} is invalid",
                details={"errors": e.errors(include_url=False)},
            ) from e
    return tuple(out)


class TemplateCatalog:
    def __init__(
        self,
        *,
        client: RepositoryClient,
        owner: str,
        repo: str,
        manifest_path: str = "templates/manifest.json",
        branch: str | None = None,
    ):
        self._client = client
        self.owner = owner
        self.repo = repo
        self.manifest_path = manifest_path
        self.branch = branch
        self._lock = threading.Lock()
        self._templates: tuple[TemplateDescriptor, ...] = ()
        self._last_synced_at: str | None = None

    # --- state ---

    @property
    def source(self) -> str:
        return f"{self.owner}/{self.repo}:{self.manifest_path}"

    @property
    def is_populated(self) -> bool:
        return self._last_synced_at is not None

    @property
    def last_synced_at(self) -> str | None:
        return self._last_synced_at

    def list_templates(self) -> list[TemplateDescriptor]:
        return list(self._templates)

    # --- sync ---

    def _fetch_manifest(self) -> str:
        raw = self._client.fetch_file(self.owner, self.repo, self.manifest_path, self.branch)
        if raw is None:
            raise TransportFailure(f"Template manifest unavailable at {self.source}")
        return raw

    def sync(self) -> SyncResult:
        source = self.source
        try:
            raw = self._fetch_manifest()
        except TransportFailure as e:
            log.warning("template_sync_failed", source=source, reason="manifest_unavailable")
            return SyncResult.failed(str(e), payload={"templates": len(self._templates)})

        try:
            parsed = parse_manifest(raw)
        except MalformedData as e:
            log.warning("template_sync_failed", source=source, reason="malformed_manifest", error=str(e))
            return SyncResult.failed(
                f"Malformed template manifest: {e}",
                payload={"templates": len(self._templates), **e.details},
            )

        with self._lock:
            self._templates = parsed
            self._last_synced_at = now_iso()

        log.info("template_sync_completed", source=source, templates=len(parsed))
        return SyncResult.ok(f"Synced {len(parsed)} templates", payload={"templates": len(parsed)})

    # --- queries ---

    def find_match(self, vertical: str | None) -> TemplateDescriptor | None:
        needle = str(vertical or "").strip().lower()
        if not needle:
            return None
        for t in self._templates:
            if needle in t.name.lower():
                return t
        return None

    def get_by_category(self, category: str | None) -> list[TemplateDescriptor]:
        return [t for t in self._templates if t.category == category]

    def get_template(self, template_id: str) -> TemplateDescriptor | None:
        for t in self._templates:
            if t.id == template_id:
                return t
        return None

    def list_template_files(self, template_id: str) -> list[str]:
        t = self.get_template(template_id)
        if t is None:
            return []
        path = t.path or f"templates/{t.id}"
        return self._client.list_directory(self.owner, self.repo, path, self.branch)
