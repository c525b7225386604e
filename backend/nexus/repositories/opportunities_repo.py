from __future__ import annotations

from typing import Any, Iterable

from boto3.dynamodb.conditions import Attr, Key

from ..db.dynamodb.types import from_ddb, to_ddb
from ..domain.models import Opportunity, OpportunityStatus, now_iso
from ..modules.workflow.stage_machine import blocked_sources
from .base_repository import Repository, build_set_expression, require_id


ENTITY_TYPE = "Opportunity"

# model field -> stored attribute
_FIELD_MAP = {
    "vertical": "vertical",
    "title": "title",
    "description": "description",
    "confidence_score": "confidenceScore",
    "estimated_value": "estimatedValue",
    "status": "status",
    "venture_id": "ventureId",
}

# Older writers of the detection side used the original column names.
_LEGACY_KEYS = {
    "vertical": ("opportunityType", "opportunity_type", "category"),
    "confidenceScore": ("confidence_score", "confidence"),
    "estimatedValue": ("estimated_value", "value"),
    "createdAt": ("created_at",),
}


def opportunity_key(opportunity_id: str) -> dict[str, str]:
    oid = require_id(opportunity_id, "opportunity_id")
    return {"pk": f"OPPORTUNITY#{oid}", "sk": "PROFILE"}


def status_index_pk(status: OpportunityStatus | str) -> str:
    return f"OPPORTUNITY_STATUS#{OpportunityStatus.coerce(status).value}"


def normalize_opportunity(item: dict[str, Any] | None) -> Opportunity | None:
    if not item:
        return None
    raw = from_ddb(dict(item))
    for canonical, legacy in _LEGACY_KEYS.items():
        if raw.get(canonical) is None:
            for k in legacy:
                if raw.get(k) is not None:
                    raw[canonical] = raw[k]
                    break
    oid = str(raw.get("opportunityId") or raw.get("id") or "").strip()
    if not oid:
        return None
    return Opportunity(
        id=oid,
        vertical=raw.get("vertical"),
        title=raw.get("title"),
        description=raw.get("description"),
        confidence_score=raw.get("confidenceScore"),
        estimated_value=raw.get("estimatedValue"),
        status=raw.get("status"),
        created_at=raw.get("createdAt"),
        venture_id=raw.get("ventureId"),
    )


def opportunity_item(opp: Opportunity) -> dict[str, Any]:
    created = opp.created_at or now_iso()
    item: dict[str, Any] = {
        **opportunity_key(opp.id),
        "entityType": ENTITY_TYPE,
        "opportunityId": opp.id,
        "vertical": opp.vertical,
        "title": opp.title,
        "description": opp.description,
        "confidenceScore": opp.confidence_score,
        "estimatedValue": opp.estimated_value,
        "status": opp.status.value,
        "createdAt": created,
        "updatedAt": created,
        "ventureId": opp.venture_id,
        # GSI1: status index, newest first when queried descending.
        "gsi1pk": status_index_pk(opp.status),
        "gsi1sk": f"{created}#{opp.id}",
    }
    return to_ddb({k: v for k, v in item.items() if v is not None})


def _store_fields(updates: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in (updates or {}).items():
        attr = _FIELD_MAP.get(k)
        if attr is None:
            raise ValueError(f"unknown opportunity field: {k}")
        if k == "status":
            status = OpportunityStatus.coerce(v)
            out["status"] = status.value
            out["gsi1pk"] = status_index_pk(status)
        else:
            out[attr] = v
    out["updatedAt"] = now_iso()
    return to_ddb(out)


def _status_guard(names: dict[str, str], values: dict[str, Any], blocked: Iterable[OpportunityStatus]) -> str:
    # Absent status reads as pending, so it never blocks.
    placeholders = []
    for i, s in enumerate(sorted(s.value for s in blocked)):
        values[f":done{i}"] = s
        placeholders.append(f":done{i}")
    if not placeholders:
        return ""
    names["#st"] = "status"
    return f" AND (attribute_not_exists(#st) OR NOT #st IN ({', '.join(placeholders)}))"


class OpportunityRepository(Repository[Opportunity]):
    """The opportunities collection: select-by-id, select-by-status, update, insert."""

    def get(self, id: str) -> Opportunity | None:
        return normalize_opportunity(self.table.get_item(key=opportunity_key(id)))

    def list(self, filters: dict[str, Any] | None = None) -> list[Opportunity]:
        status = (filters or {}).get("status")
        if status:
            return self.list_by_status(status)
        return self.list_all()

    def list_by_status(self, status: OpportunityStatus | str, *, limit: int | None = None) -> list[Opportunity]:
        out: list[Opportunity] = []
        token: str | None = None
        while True:
            pg = self.table.query_page(
                index_name="GSI1",
                key_condition_expression=Key("gsi1pk").eq(status_index_pk(status)),
                scan_index_forward=False,
                limit=200,
                next_token=token,
            )
            for it in pg.items or []:
                opp = normalize_opportunity(it)
                if opp:
                    out.append(opp)
            if limit is not None and len(out) >= limit:
                return out[:limit]
            token = pg.next_token
            if not token:
                return out

    def list_all(self) -> list[Opportunity]:
        """Full snapshot, including records whose status is unknown or absent."""
        out: list[Opportunity] = []
        for it in self.table.scan_all(filter_expression=Attr("entityType").eq(ENTITY_TYPE)):
            opp = normalize_opportunity(it)
            if opp:
                out.append(opp)
        return out

    def create(self, entity: Opportunity) -> Opportunity:
        item = opportunity_item(entity)
        self.table.put_item(item=item, condition_expression="attribute_not_exists(pk)")
        return normalize_opportunity(item) or entity

    def update(self, id: str, updates: dict[str, Any]) -> Opportunity | None:
        """
        Set fields by id. A status change is conditional on the stored status
        being one it may move forward from; a backwards move fails with
        DdbConflict and leaves the record untouched.
        """
        fields = _store_fields(updates)
        expr, names, values = build_set_expression(fields)
        condition = "attribute_exists(pk)"
        if "status" in (updates or {}):
            condition += _status_guard(names, values, blocked_sources(updates["status"]))
        updated = self.table.update_item(
            key=opportunity_key(id),
            update_expression=expr,
            expression_attribute_names=names,
            expression_attribute_values=values,
            condition_expression=condition,
            return_values="ALL_NEW",
        )
        return normalize_opportunity(updated)

    def tx_advance_status(
        self,
        *,
        opportunity_id: str,
        target: OpportunityStatus,
        unless_in: Iterable[OpportunityStatus],
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Transaction item: move to `target` only while the stored status is not
        one of `unless_in`. A concurrent caller that already advanced the record
        makes the condition fail (optimistic concurrency). Legacy or absent
        statuses still qualify, since they read as pending.
        """
        fields = _store_fields({"status": target, **(extra or {})})
        expr, names, values = build_set_expression(fields)
        return self.table.tx_update(
            key=opportunity_key(opportunity_id),
            update_expression=expr,
            expression_attribute_names=names,
            expression_attribute_values=values,
            condition_expression="attribute_exists(pk)" + _status_guard(names, values, unless_in),
        )
