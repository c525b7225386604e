"""
Opportunity -> template -> venture pipeline.

One run of `process_opportunity` is strictly sequential:

1. validate (intelligence module)
2. load the opportunity, skip anything already processed
3. resolve a template (first match in manifest order)
4. provision the venture repository (best-effort, result recorded)
5. persist the venture and advance the opportunity status
6. append one orchestration event

Steps 5-6 commit in a single store transaction whose status update is
conditional, so two concurrent runs for the same id cannot both produce a
venture. Steps 1-3 abort with `None` and no side effects.
"""

from __future__ import annotations

import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from ...db.dynamodb.errors import DdbConflict
from ...domain.models import (
    Opportunity,
    OpportunityStatus,
    OrchestrationEvent,
    ProvisionResult,
    RepoInventoryEntry,
    SyncResult,
    TemplateDescriptor,
    Venture,
    now_iso,
)
from ...infrastructure.github import RepositoryClient
from ...observability.context import correlation_id_var
from ...observability.logging import get_logger
from ...repositories.events_repo import EventRepository
from ...repositories.opportunities_repo import OpportunityRepository
from ...repositories.repo_inventory_repo import RepoInventoryRepository
from ...repositories.ventures_repo import VentureRepository
from ...settings import Settings
from ..financial.financial_service import FinancialModule
from ..intelligence.intelligence_service import IntelligenceModule
from ..templates.catalog import TemplateCatalog
from ..workflow.stage_machine import PROCESSABLE, already_advanced, pipeline_target


log = get_logger("orchestrator")

EVENT_SOURCE = "arbitrage-nexus"
EVENT_VENTURE_GENERATED = "venture_generated"

_VENTURE_REPO_RE = re.compile(r"^(fin|ec|ht|et|ai|ft)-\d+")


def generate_venture_id() -> str:
    # Millisecond timestamp keeps ids sortable; the suffix keeps same-ms runs unique.
    return f"venture-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def determine_repo_role(repo_name: str, *, template_repo: str = "business-template-marketplace") -> str:
    name = str(repo_name or "").strip()
    if name == EVENT_SOURCE:
        return "orchestrator"
    if name == template_repo:
        return "template"
    if name.startswith("iza-os-"):
        return "core"
    if "website" in name:
        return "ui"
    if _VENTURE_REPO_RE.match(name) or name.startswith("venture-"):
        return "venture"
    return "other"


class Orchestrator:
    def __init__(
        self,
        *,
        settings: Settings,
        client: RepositoryClient,
        opportunities: OpportunityRepository,
        ventures: VentureRepository,
        events: EventRepository,
        inventory: RepoInventoryRepository,
        catalog: TemplateCatalog,
        financial: FinancialModule,
        intelligence: IntelligenceModule,
    ):
        self.settings = settings
        self.client = client
        self.opportunities = opportunities
        self.ventures = ventures
        self.events = events
        self.inventory = inventory
        self.catalog = catalog
        self.financial = financial
        self.intelligence = intelligence

        self._locks_guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    # --- per-id mutual exclusion (in-process) ---

    @contextmanager
    def _exclusive(self, opportunity_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock, refs = self._locks.get(opportunity_id, (threading.Lock(), 0))
            self._locks[opportunity_id] = (lock, refs + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, refs = self._locks[opportunity_id]
                if refs <= 1:
                    del self._locks[opportunity_id]
                else:
                    self._locks[opportunity_id] = (lock, refs - 1)

    # --- pipeline ---

    def process_opportunity(self, opportunity_id: str) -> str | None:
        oid = str(opportunity_id or "").strip()
        if not oid:
            return None

        token = correlation_id_var.set("run_" + uuid.uuid4().hex[:12])
        try:
            with self._exclusive(oid):
                return self._run_pipeline(oid)
        finally:
            correlation_id_var.reset(token)

    def _run_pipeline(self, oid: str) -> str | None:
        log.info("opportunity_processing_started", opportunity_id=oid)

        # 1. validate
        if not self.intelligence.validate(oid):
            log.info("opportunity_processing_aborted", opportunity_id=oid, reason="validation_failed")
            return None

        # 2. load
        opp = self.opportunities.get(oid)
        if opp is None:
            log.info("opportunity_processing_aborted", opportunity_id=oid, reason="not_found")
            return None
        if opp.status not in PROCESSABLE:
            log.info(
                "opportunity_processing_aborted",
                opportunity_id=oid,
                reason="already_processed",
                status=opp.status.value,
            )
            return None

        # 3. match
        template = self._resolve_template(opp)
        if template is None:
            log.info("opportunity_processing_aborted", opportunity_id=oid, reason="no_template", vertical=opp.vertical)
            return None

        # 4. provision (best-effort)
        venture_id = generate_venture_id()
        provision = self._provision(opp, template, venture_id)

        # 5 + 6. persist venture, advance status, append event
        target = pipeline_target(immediate_activation=self.settings.immediate_activation)
        venture = Venture(
            id=venture_id,
            opportunity_id=opp.id,
            template_id=template.id,
            repo_name=provision.repo_name or venture_id,
            repo_url=provision.repo_url or f"https://github.com/{self.settings.venture_owner}/{venture_id}",
            provisioning_status=self._provisioning_status(provision),
            provisioning_error=provision.error,
            status="active" if target == OpportunityStatus.LAUNCHED else "generated",
        )
        event = OrchestrationEvent(
            event_type=EVENT_VENTURE_GENERATED,
            source=EVENT_SOURCE,
            target=venture_id,
            payload={
                "opportunityId": opp.id,
                "templateId": template.id,
                "templateVersion": template.version,
                "fromStatus": opp.status.value,
                "toStatus": target.value,
                "provisioningStatus": venture.provisioning_status,
            },
        )
        try:
            self._commit(opp, venture, event, target)
        except DdbConflict:
            log.warning("opportunity_processing_conflict", opportunity_id=oid, venture_id=venture_id)
            return None

        log.info(
            "venture_created",
            opportunity_id=oid,
            venture_id=venture_id,
            template_id=template.id,
            status=target.value,
            provisioning_status=venture.provisioning_status,
        )
        return venture_id

    def _resolve_template(self, opp: Opportunity) -> TemplateDescriptor | None:
        if not self.catalog.is_populated:
            self.catalog.sync()
        return self.catalog.find_match(opp.vertical)

    def _provisioning_status(self, provision: ProvisionResult) -> str:
        if not self.settings.provisioning_enabled:
            return "skipped"
        return "provisioned" if provision.ok else "failed"

    def _provision(self, opp: Opportunity, template: TemplateDescriptor, venture_id: str) -> ProvisionResult:
        if not self.settings.provisioning_enabled:
            return ProvisionResult(ok=False, repo_name=venture_id, error="provisioning_disabled")
        try:
            result = self.client.create_from_template(
                template_owner=self.settings.template_owner,
                template_repo=self.settings.template_repo,
                owner=self.settings.venture_owner,
                name=venture_id,
                description=f"Generated from {template.id} ({template.path or template.name}) for opportunity {opp.id}",
                private=self.settings.venture_repos_private,
            )
        except Exception as e:  # noqa: BLE001
            result = ProvisionResult(ok=False, repo_name=venture_id, error=str(e) or type(e).__name__)
        if not result.ok:
            log.warning("venture_provisioning_failed", venture_id=venture_id, error=result.error)
        return result

    def _commit(
        self,
        opp: Opportunity,
        venture: Venture,
        event: OrchestrationEvent,
        target: OpportunityStatus,
    ) -> None:
        self.opportunities.table.transact_write(
            puts=[self.ventures.tx_create(venture), self.events.tx_append(event)],
            updates=[
                self.opportunities.tx_advance_status(
                    opportunity_id=opp.id,
                    target=target,
                    unless_in=already_advanced(),
                    extra={"venture_id": venture.id},
                )
            ],
        )

    # --- sync ---

    def _sync_jobs(self) -> dict[str, Callable[[], SyncResult]]:
        return {
            "templates": self.catalog.sync,
            "financial": self.financial.sync,
            "intelligence": self.intelligence.sync,
            "inventory": self.sync_repos_inventory,
        }

    def sync_all(self) -> dict[str, SyncResult]:
        jobs = self._sync_jobs()
        timeout = float(self.settings.sync_timeout_seconds)
        results: dict[str, SyncResult] = {}

        executor = ThreadPoolExecutor(max_workers=max(1, min(len(jobs), int(self.settings.sync_max_workers))))
        try:
            futures = {name: executor.submit(fn) for name, fn in jobs.items()}
            deadline = time.monotonic() + timeout
            for name, fut in futures.items():
                try:
                    results[name] = fut.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeout:
                    log.warning("module_sync_timed_out", module=name, timeout_seconds=timeout)
                    results[name] = SyncResult.failed(f"{name} sync timed out after {timeout:g}s")
                except Exception as e:  # noqa: BLE001
                    log.warning("module_sync_failed", module=name, error=str(e) or type(e).__name__)
                    results[name] = SyncResult.failed(f"{name} sync failed: {e}")
        finally:
            # Do not wait on a hung module; its thread finishes on its own.
            executor.shutdown(wait=False, cancel_futures=True)

        log.info("sync_all_completed", results={k: v.success for k, v in results.items()})
        return results

    def initialize(self) -> dict[str, SyncResult]:
        log.info("orchestrator_initializing")
        return self.sync_all()

    def sync_repos_inventory(self) -> SyncResult:
        owner = self.settings.venture_owner
        repos = self.client.list_org_repos(owner)
        if not repos:
            return SyncResult.failed(f"No repositories visible for {owner}", payload={"synced": 0})

        synced = 0
        failed: list[str] = []
        for repo in repos:
            name = str(repo.get("name") or "").strip()
            if not name:
                continue
            entry = RepoInventoryEntry(
                repo_name=name,
                repo_url=repo.get("html_url"),
                role=determine_repo_role(name, template_repo=self.settings.template_repo),
                health_status="archived" if repo.get("archived") else "active",
                metadata={
                    "description": repo.get("description"),
                    "updatedAt": repo.get("updated_at"),
                    "size": repo.get("size"),
                },
            )
            try:
                self.inventory.upsert(entry)
                synced += 1
            except Exception as e:  # noqa: BLE001
                log.warning("repo_inventory_upsert_failed", repo=name, error=str(e) or type(e).__name__)
                failed.append(name)

        payload = {"synced": synced, "failed": failed}
        if failed and not synced:
            return SyncResult.failed(f"Failed to record {len(failed)} repositories", payload=payload)
        log.info("repo_inventory_synced", owner=owner, synced=synced, failed=len(failed))
        return SyncResult.ok(f"Synced {synced} repositories", payload=payload)

    # --- dashboard ---

    def get_dashboard_metrics(self) -> dict[str, Any]:
        with ThreadPoolExecutor(max_workers=5) as ex:
            f_value = ex.submit(self.financial.total_estimated_value)
            f_counts = ex.submit(self.financial.aggregate_by_status)
            f_pending = ex.submit(self.opportunities.list_by_status, OpportunityStatus.PENDING)
            f_revenue = ex.submit(self.financial.total_revenue)
            f_active = ex.submit(self.ventures.list_by_status, "active")

            total_value = f_value.result()
            counts = f_counts.result()
            pending = len(f_pending.result())
            revenue = f_revenue.result()
            active = len(f_active.result())

        target = float(self.settings.revenue_target)
        return {
            "opportunities": {
                "total": sum(counts.values()),
                "byStatus": counts,
                "pending": pending,
                "totalEstimatedValue": total_value,
            },
            "revenue": {
                "totalMrr": revenue,
                "targetMrr": target,
                "achievementRate": (revenue / target) * 100 if target > 0 else 0.0,
            },
            "ventures": {
                "active": active,
                "launched": counts.get(OpportunityStatus.LAUNCHED.value, 0),
            },
            "templates": {
                "count": len(self.catalog.list_templates()),
                "lastSyncedAt": self.catalog.last_synced_at,
            },
            "generatedAt": now_iso(),
        }
