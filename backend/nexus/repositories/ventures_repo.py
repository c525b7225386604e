from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.types import from_ddb, to_ddb
from ..domain.models import Venture, now_iso
from .base_repository import Repository, build_set_expression, require_id


ENTITY_TYPE = "Venture"

_FIELD_MAP = {
    "repo_name": "repoName",
    "repo_url": "repoUrl",
    "provisioning_status": "provisioningStatus",
    "provisioning_error": "provisioningError",
    "status": "status",
    "mrr": "mrr",
}


def venture_key(venture_id: str) -> dict[str, str]:
    vid = require_id(venture_id, "venture_id")
    return {"pk": f"VENTURE#{vid}", "sk": "PROFILE"}


def status_index_pk(status: str) -> str:
    return f"VENTURE_STATUS#{str(status or 'generated').strip().lower()}"


def normalize_venture(item: dict[str, Any] | None) -> Venture | None:
    if not item:
        return None
    raw = from_ddb(dict(item))
    vid = str(raw.get("ventureId") or "").strip()
    if not vid:
        return None
    return Venture(
        id=vid,
        opportunity_id=str(raw.get("opportunityId") or ""),
        template_id=str(raw.get("templateId") or ""),
        repo_name=str(raw.get("repoName") or vid),
        repo_url=raw.get("repoUrl"),
        provisioning_status=raw.get("provisioningStatus") or "skipped",
        provisioning_error=raw.get("provisioningError"),
        status=raw.get("status") or "generated",
        mrr=raw.get("mrr") or 0.0,
        created_at=raw.get("createdAt") or now_iso(),
        updated_at=raw.get("updatedAt"),
    )


def venture_item(v: Venture) -> dict[str, Any]:
    item: dict[str, Any] = {
        **venture_key(v.id),
        "entityType": ENTITY_TYPE,
        "ventureId": v.id,
        "opportunityId": v.opportunity_id,
        "templateId": v.template_id,
        "repoName": v.repo_name,
        "repoUrl": v.repo_url,
        "provisioningStatus": v.provisioning_status,
        "provisioningError": v.provisioning_error,
        "status": v.status,
        "mrr": v.mrr,
        "createdAt": v.created_at,
        "updatedAt": v.updated_at or v.created_at,
        "gsi1pk": status_index_pk(v.status),
        "gsi1sk": f"{v.created_at}#{v.id}",
    }
    return to_ddb({k: val for k, val in item.items() if val is not None})


class VentureRepository(Repository[Venture]):
    """The ventures collection. Ventures are only ever created by the pipeline."""

    def get(self, id: str) -> Venture | None:
        return normalize_venture(self.table.get_item(key=venture_key(id)))

    def list(self, filters: dict[str, Any] | None = None) -> list[Venture]:
        return self.list_by_status(str((filters or {}).get("status") or "active"))

    def list_by_status(self, status: str) -> list[Venture]:
        out: list[Venture] = []
        token: str | None = None
        while True:
            pg = self.table.query_page(
                index_name="GSI1",
                key_condition_expression=Key("gsi1pk").eq(status_index_pk(status)),
                scan_index_forward=False,
                limit=200,
                next_token=token,
            )
            out.extend(v for v in (normalize_venture(it) for it in pg.items or []) if v)
            token = pg.next_token
            if not token:
                return out

    def create(self, entity: Venture) -> Venture:
        item = venture_item(entity)
        self.table.put_item(item=item, condition_expression="attribute_not_exists(pk)")
        return entity

    def tx_create(self, entity: Venture) -> dict[str, Any]:
        return self.table.tx_put(item=venture_item(entity), condition_expression="attribute_not_exists(pk)")

    def update(self, id: str, updates: dict[str, Any]) -> Venture | None:
        fields: dict[str, Any] = {}
        for k, v in (updates or {}).items():
            attr = _FIELD_MAP.get(k)
            if attr is None:
                raise ValueError(f"unknown venture field: {k}")
            fields[attr] = v
            if k == "status":
                fields["gsi1pk"] = status_index_pk(str(v))
        fields["updatedAt"] = now_iso()
        expr, names, values = build_set_expression(to_ddb(fields))
        updated = self.table.update_item(
            key=venture_key(id),
            update_expression=expr,
            expression_attribute_names=names,
            expression_attribute_values=values,
            condition_expression="attribute_exists(pk)",
            return_values="ALL_NEW",
        )
        return normalize_venture(updated)
