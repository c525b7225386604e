from __future__ import annotations

from typing import Any

from ...db.dynamodb.table import DynamoTable
from ...infrastructure.github import RepositoryClient
from ...infrastructure.github.github_client import GitHubClient
from ...repositories.events_repo import EventRepository
from ...repositories.opportunities_repo import OpportunityRepository
from ...repositories.repo_inventory_repo import RepoInventoryRepository
from ...repositories.ventures_repo import VentureRepository
from ...settings import Settings
from ..financial.financial_service import FinancialModule
from ..intelligence.intelligence_service import IntelligenceModule
from ..templates.catalog import TemplateCatalog
from .orchestrator import Orchestrator, determine_repo_role


def build_orchestrator(
    settings: Settings,
    *,
    client: RepositoryClient | None = None,
    table: Any | None = None,
) -> Orchestrator:
    """
    Wire one orchestrator for the process. Callers keep the returned object and
    pass it along (FastAPI stores it on app.state); there is no module-level
    instance. Without `table`, the DynamoDB table named by DDB_TABLE_NAME is
    used; when that is unset too the repositories fail on first use.
    """
    if table is None and settings.ddb_table_name:
        table = DynamoTable(table_name=settings.ddb_table_name)
    repo_client = client if client is not None else GitHubClient.from_settings(settings)
    opportunities = OpportunityRepository(table)
    ventures = VentureRepository(table)

    return Orchestrator(
        settings=settings,
        client=repo_client,
        opportunities=opportunities,
        ventures=ventures,
        events=EventRepository(table),
        inventory=RepoInventoryRepository(table),
        catalog=TemplateCatalog(
            client=repo_client,
            owner=settings.template_owner,
            repo=settings.template_repo,
            manifest_path=settings.template_manifest_path,
            branch=settings.template_ref,
        ),
        financial=FinancialModule(
            opportunities=opportunities,
            ventures=ventures,
            default_growth_rate=settings.forecast_growth_rate,
        ),
        intelligence=IntelligenceModule(
            opportunities=opportunities,
            threshold=settings.validation_threshold,
        ),
    )


__all__ = ["Orchestrator", "build_orchestrator", "determine_repo_role"]
