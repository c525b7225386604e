from __future__ import annotations

import threading

import pytest

from nexus.domain.models import SyncResult
from nexus.modules.orchestrator import build_orchestrator, determine_repo_role
from nexus.repositories.repo_inventory_repo import RepoInventoryRepository
from nexus.settings import Settings


@pytest.mark.parametrize(
    "name,role",
    [
        ("arbitrage-nexus", "orchestrator"),
        ("business-template-marketplace", "template"),
        ("iza-os-core", "core"),
        ("company-website", "ui"),
        ("fin-001-payments", "venture"),
        ("venture-1712345678901-abc123", "venture"),
        ("dotfiles", "other"),
    ],
)
def test_determine_repo_role(name, role):
    assert determine_repo_role(name) == role


def test_sync_all_runs_every_module(orchestrator, repo_client, add_opportunity):
    add_opportunity("o1")
    repo_client.org_repos = [{"name": "fin-001-payments", "html_url": "https://github.com/Worldwidebro/fin-001-payments"}]

    results = orchestrator.sync_all()

    assert set(results) == {"templates", "financial", "intelligence", "inventory"}
    assert all(r.success for r in results.values())
    assert results["intelligence"].payload == {"pending": 1, "ready": 1}


def test_sync_all_isolates_a_failing_module(orchestrator, monkeypatch):
    def boom():
        raise RuntimeError("manifest host down")

    monkeypatch.setattr(orchestrator.catalog, "sync", boom)

    results = orchestrator.sync_all()

    assert results["templates"].success is False
    assert "manifest host down" in results["templates"].message
    assert results["financial"].success is True
    assert results["intelligence"].success is True
    # No repositories visible in the fake organisation.
    assert results["inventory"].success is False


def test_sync_all_times_out_a_hung_module(repo_client, fake_table, monkeypatch):
    settings = Settings(NODE_ENV="test", DDB_TABLE_NAME="nexus-test", SYNC_TIMEOUT_SECONDS=0.2)
    orch = build_orchestrator(settings, client=repo_client, table=fake_table)
    release = threading.Event()

    def hang():
        release.wait(5)
        return SyncResult.ok("late")

    monkeypatch.setattr(orch.financial, "sync", hang)
    try:
        results = orch.sync_all()
    finally:
        release.set()

    assert results["financial"].success is False
    assert "timed out" in results["financial"].message
    assert results["templates"].success is True


def test_repo_inventory_sync_records_roles(orchestrator, fake_table, repo_client):
    repo_client.org_repos = [
        {"name": "fin-001-payments", "html_url": "https://github.com/Worldwidebro/fin-001-payments"},
        {"name": "business-template-marketplace", "archived": False},
        {"name": "old-site-website", "archived": True},
    ]

    res = orchestrator.sync_repos_inventory()

    assert res.success is True
    assert res.payload["synced"] == 3
    inventory = RepoInventoryRepository(fake_table)
    assert [e.repo_name for e in inventory.list({"role": "venture"})] == ["fin-001-payments"]
    assert inventory.get("old-site-website").health_status == "archived"
    assert inventory.get("business-template-marketplace").role == "template"


def test_dashboard_metrics(orchestrator, add_opportunity):
    add_opportunity("o1", estimated_value=1000.0)
    add_opportunity("o2", confidence_score=0.3, estimated_value=500.0)
    orchestrator.process_opportunity("o1")

    m = orchestrator.get_dashboard_metrics()

    assert m["opportunities"]["total"] == 2
    assert m["opportunities"]["byStatus"]["matched"] == 1
    assert m["opportunities"]["byStatus"]["pending"] == 1
    assert m["opportunities"]["pending"] == 1
    assert m["opportunities"]["totalEstimatedValue"] == 1500.0
    assert m["revenue"]["totalMrr"] == 0.0
    assert m["revenue"]["targetMrr"] == 2_390_000.0
    assert m["revenue"]["achievementRate"] == 0.0
    assert m["templates"]["count"] == 2
    assert m["generatedAt"]


def test_initialize_syncs_catalog(orchestrator):
    assert orchestrator.catalog.is_populated is False
    results = orchestrator.initialize()
    assert results["templates"].success is True
    assert orchestrator.catalog.is_populated is True


def test_dashboard_metrics_survive_a_malformed_record(orchestrator, fake_table, add_opportunity):
    from nexus.repositories.opportunities_repo import opportunity_key

    add_opportunity("o1", estimated_value=1000.0)
    add_opportunity("o2", estimated_value=500.0)
    fake_table.items[tuple(opportunity_key("o2").values())]["estimatedValue"] = "N/A"

    m = orchestrator.get_dashboard_metrics()

    assert m["opportunities"]["total"] == 2
    assert m["opportunities"]["totalEstimatedValue"] == 1000.0
