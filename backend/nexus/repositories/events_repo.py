from __future__ import annotations

import time
import uuid
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.types import from_ddb, to_ddb
from ..domain.models import OrchestrationEvent
from .base_repository import Repository, require_id


ENTITY_TYPE = "OrchestrationEvent"
GLOBAL_INDEX_PK = "TYPE#ORCHESTRATION_EVENT"


def event_key(*, target: str, event_id: str, created_at: str) -> dict[str, str]:
    t = require_id(target, "target")
    eid = require_id(event_id, "event_id")
    ts = require_id(created_at, "created_at")
    return {"pk": f"ORCHESTRATION_EVENT#{t}", "sk": f"EVENT#{ts}#{eid}"}


def normalize_event(item: dict[str, Any] | None) -> OrchestrationEvent | None:
    if not item:
        return None
    raw = from_ddb(dict(item))
    return OrchestrationEvent(
        event_id=str(raw.get("eventId") or "").strip() or None,
        event_type=str(raw.get("eventType") or "event"),
        source=str(raw.get("source") or ""),
        target=str(raw.get("target") or ""),
        payload=raw.get("payload") if isinstance(raw.get("payload"), dict) else {},
        created_at=str(raw.get("createdAt") or ""),
    )


class EventRepository(Repository[OrchestrationEvent]):
    """
    Append-only audit log. Items are written with `attribute_not_exists` so an
    event is never overwritten; there is no update or delete path.
    """

    def build_item(self, event: OrchestrationEvent) -> dict[str, Any]:
        eid = event.event_id or ("e_" + uuid.uuid4().hex[:18])
        item: dict[str, Any] = {
            **event_key(target=event.target, event_id=eid, created_at=event.created_at),
            "entityType": ENTITY_TYPE,
            "eventId": eid,
            "eventType": str(event.event_type or "").strip() or "event",
            "source": event.source,
            "target": event.target,
            "payload": event.payload if isinstance(event.payload, dict) else {},
            "createdAt": event.created_at,
            "tsEpochMs": int(time.time() * 1000),
            # Global time index for reporting (GSI1)
            "gsi1pk": GLOBAL_INDEX_PK,
            "gsi1sk": f"{event.created_at}#{eid}",
        }
        return to_ddb(item)

    def tx_append(self, event: OrchestrationEvent) -> dict[str, Any]:
        return self.table.tx_put(
            item=self.build_item(event),
            condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
        )

    def create(self, entity: OrchestrationEvent) -> OrchestrationEvent:
        item = self.build_item(entity)
        self.table.put_item(item=item, condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)")
        return normalize_event(item) or entity

    append = create

    def get(self, id: str) -> OrchestrationEvent | None:
        for ev in self.list_recent(limit=500):
            if ev.event_id == id:
                return ev
        return None

    def list(self, filters: dict[str, Any] | None = None) -> list[OrchestrationEvent]:
        target = (filters or {}).get("target")
        if target:
            return self.list_for_target(str(target))
        return self.list_recent()

    def list_recent(self, *, limit: int = 50) -> list[OrchestrationEvent]:
        pg = self.table.query_page(
            index_name="GSI1",
            key_condition_expression=Key("gsi1pk").eq(GLOBAL_INDEX_PK),
            scan_index_forward=False,
            limit=max(1, min(500, int(limit or 50))),
            next_token=None,
        )
        return [e for e in (normalize_event(it) for it in pg.items or []) if e]

    def list_for_target(self, target: str, *, limit: int = 50) -> list[OrchestrationEvent]:
        pg = self.table.query_page(
            key_condition_expression=Key("pk").eq(f"ORCHESTRATION_EVENT#{require_id(target, 'target')}"),
            scan_index_forward=False,
            limit=max(1, min(200, int(limit or 50))),
            next_token=None,
        )
        return [e for e in (normalize_event(it) for it in pg.items or []) if e]

    def update(self, id: str, updates: dict[str, Any]) -> OrchestrationEvent | None:
        raise NotImplementedError("orchestration events are append-only")
