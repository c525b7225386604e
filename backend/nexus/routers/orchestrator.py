from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ..errors import NotFound, ValidationFailed
from ..modules.orchestrator import Orchestrator

router = APIRouter(tags=["orchestrator"])


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


class RevenueUpdate(BaseModel):
    mrr: float = Field(ge=0)


@router.post("/opportunities/{opportunityId}/process")
def process_opportunity(
    opportunityId: str,
    strict: bool = Query(default=False),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    # A null ventureId is an expected outcome (invalid, unmatched or already processed);
    # strict callers get it as a 422 instead.
    venture_id = orchestrator.process_opportunity(opportunityId)
    if venture_id is None and strict:
        raise ValidationFailed(
            f"Opportunity '{opportunityId}' produced no venture",
            details={"opportunityId": opportunityId},
        )
    return {"opportunityId": opportunityId, "ventureId": venture_id, "launched": venture_id is not None}


@router.post("/sync")
def sync_all(orchestrator: Orchestrator = Depends(get_orchestrator)):
    results = orchestrator.sync_all()
    return {
        "ok": all(r.success for r in results.values()),
        "results": {name: r.model_dump() for name, r in results.items()},
    }


@router.get("/metrics")
def dashboard_metrics(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.get_dashboard_metrics()


@router.get("/templates")
def list_templates(category: str | None = None, orchestrator: Orchestrator = Depends(get_orchestrator)):
    catalog = orchestrator.catalog
    rows = catalog.get_by_category(category) if category is not None else catalog.list_templates()
    return {"data": [t.model_dump() for t in rows], "lastSyncedAt": catalog.last_synced_at}


@router.get("/templates/match")
def match_template(vertical: str = Query(min_length=1), orchestrator: Orchestrator = Depends(get_orchestrator)):
    t = orchestrator.catalog.find_match(vertical)
    if t is None:
        raise NotFound(f"No template matches vertical '{vertical}'")
    return t.model_dump()


@router.get("/templates/{templateId}/files")
def template_files(templateId: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    if orchestrator.catalog.get_template(templateId) is None:
        raise NotFound(f"Template '{templateId}' not found")
    return {"templateId": templateId, "files": orchestrator.catalog.list_template_files(templateId)}


@router.get("/forecast")
def forecast(
    periods: int = Query(default=12),
    growthRate: float | None = Query(default=None),
    currentTotal: float | None = Query(default=None, ge=0),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    financial = orchestrator.financial
    rate = financial.default_growth_rate if growthRate is None else growthRate
    return {"periods": periods, "growthRate": rate, "projection": financial.forecast(periods, rate, currentTotal)}


@router.get("/market-gap")
def market_gap(vertical: str = Query(min_length=1), orchestrator: Orchestrator = Depends(get_orchestrator)):
    return {"vertical": vertical, "confidence": orchestrator.intelligence.analyze_market_gap(vertical)}


@router.post("/ventures/{ventureId}/revenue")
def track_revenue(ventureId: str, body: RevenueUpdate, orchestrator: Orchestrator = Depends(get_orchestrator)):
    venture = orchestrator.financial.track_venture_revenue(ventureId, body.mrr)
    if venture is None:
        raise NotFound(f"Venture '{ventureId}' not found")
    return venture.model_dump()


@router.get("/events")
def recent_events(limit: int = Query(default=50, ge=1, le=500), orchestrator: Orchestrator = Depends(get_orchestrator)):
    return {"data": [e.model_dump() for e in orchestrator.events.list_recent(limit=limit)]}
