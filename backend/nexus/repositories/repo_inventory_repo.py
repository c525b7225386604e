from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.types import from_ddb, to_ddb
from ..domain.models import RepoInventoryEntry
from .base_repository import Repository, build_set_expression, require_id


ENTITY_TYPE = "RepoInventory"
INDEX_PK = "TYPE#REPO_INVENTORY"


def repo_key(repo_name: str) -> dict[str, str]:
    return {"pk": f"REPO#{require_id(repo_name, 'repo_name')}", "sk": "PROFILE"}


def normalize_repo(item: dict[str, Any] | None) -> RepoInventoryEntry | None:
    if not item:
        return None
    raw = from_ddb(dict(item))
    name = str(raw.get("repoName") or "").strip()
    if not name:
        return None
    return RepoInventoryEntry(
        repo_name=name,
        repo_url=raw.get("repoUrl"),
        role=str(raw.get("role") or "other"),
        health_status=str(raw.get("healthStatus") or "active"),
        last_sync=str(raw.get("lastSync") or ""),
        metadata=raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {},
    )


class RepoInventoryRepository(Repository[RepoInventoryEntry]):
    """Inventory of the organisation's repositories, keyed by repo name (upsert semantics)."""

    def get(self, id: str) -> RepoInventoryEntry | None:
        return normalize_repo(self.table.get_item(key=repo_key(id)))

    def list(self, filters: dict[str, Any] | None = None) -> list[RepoInventoryEntry]:
        role = (filters or {}).get("role")
        pg = self.table.query_page(
            index_name="GSI1",
            key_condition_expression=Key("gsi1pk").eq(INDEX_PK),
            scan_index_forward=True,
            limit=500,
            next_token=None,
        )
        rows = [r for r in (normalize_repo(it) for it in pg.items or []) if r]
        return [r for r in rows if r.role == role] if role else rows

    def create(self, entity: RepoInventoryEntry) -> RepoInventoryEntry:
        return self.upsert(entity)

    def upsert(self, entity: RepoInventoryEntry) -> RepoInventoryEntry:
        fields = to_ddb(
            {
                "entityType": ENTITY_TYPE,
                "repoName": entity.repo_name,
                "repoUrl": entity.repo_url,
                "role": entity.role,
                "healthStatus": entity.health_status,
                "lastSync": entity.last_sync,
                "metadata": entity.metadata,
                "gsi1pk": INDEX_PK,
                "gsi1sk": entity.repo_name,
            }
        )
        expr, names, values = build_set_expression({k: v for k, v in fields.items() if v is not None})
        updated = self.table.update_item(
            key=repo_key(entity.repo_name),
            update_expression=expr,
            expression_attribute_names=names,
            expression_attribute_values=values,
            return_values="ALL_NEW",
        )
        return normalize_repo(updated) or entity

    def update(self, id: str, updates: dict[str, Any]) -> RepoInventoryEntry | None:
        current = self.get(id)
        if current is None:
            return None
        return self.upsert(current.model_copy(update=updates))
