from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/", tags=["health"])
def health(request: Request):
    settings = request.app.state.settings
    orchestrator = request.app.state.orchestrator
    return {
        "message": "Arbitrage Nexus Orchestrator API",
        "version": "1.0.0",
        "status": "running",
        "environment": settings.normalized_environment,
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
        "templates": {
            "populated": orchestrator.catalog.is_populated,
            "count": len(orchestrator.catalog.list_templates()),
        },
    }
