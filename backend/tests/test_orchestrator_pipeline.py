from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from nexus.domain.models import OpportunityStatus
from nexus.modules.orchestrator import build_orchestrator
from nexus.repositories.opportunities_repo import OpportunityRepository, opportunity_key
from nexus.repositories.ventures_repo import VentureRepository
from nexus.settings import Settings


def _status(fake_table, oid: str) -> OpportunityStatus:
    return OpportunityRepository(fake_table).get(oid).status


def test_matching_opportunity_produces_venture_and_one_event(orchestrator, fake_table, repo_client, add_opportunity):
    add_opportunity("o1", vertical="oil", title="X", description="Y", confidence_score=0.85)

    venture_id = orchestrator.process_opportunity("o1")

    assert venture_id and venture_id.startswith("venture-")
    assert _status(fake_table, "o1") == OpportunityStatus.MATCHED

    venture = VentureRepository(fake_table).get(venture_id)
    assert venture.opportunity_id == "o1"
    assert venture.template_id == "oil-refinery-template"
    assert venture.provisioning_status == "provisioned"
    assert venture.status == "generated"

    events = fake_table.of_type("OrchestrationEvent")
    assert len(events) == 1
    assert events[0]["eventType"] == "venture_generated"
    assert events[0]["source"] == "arbitrage-nexus"
    assert events[0]["target"] == venture_id
    assert events[0]["payload"]["opportunityId"] == "o1"
    assert events[0]["payload"]["toStatus"] == "matched"

    # Catalog was synced lazily, and the venture repo came from the marketplace template.
    assert repo_client.fetches == 1
    assert repo_client.created[0]["template_repo"] == "business-template-marketplace"
    assert repo_client.created[0]["name"] == venture_id


def test_low_confidence_leaves_no_trace(orchestrator, fake_table, repo_client, add_opportunity):
    add_opportunity("o1", confidence_score=0.5)

    assert orchestrator.process_opportunity("o1") is None
    assert _status(fake_table, "o1") == OpportunityStatus.PENDING
    assert fake_table.of_type("Venture") == []
    assert fake_table.of_type("OrchestrationEvent") == []
    assert repo_client.created == []


def test_unknown_and_blank_ids_produce_nothing(orchestrator, fake_table):
    assert orchestrator.process_opportunity("missing") is None
    assert orchestrator.process_opportunity("  ") is None
    assert fake_table.transactions == []


def test_no_template_match_aborts_without_mutation(orchestrator, fake_table, repo_client, add_opportunity):
    add_opportunity("o1", vertical="timber")

    assert orchestrator.process_opportunity("o1") is None
    assert _status(fake_table, "o1") == OpportunityStatus.PENDING
    assert fake_table.transactions == []
    assert repo_client.created == []


def test_already_launched_opportunity_is_not_processed_again(orchestrator, fake_table, add_opportunity):
    add_opportunity("o1", status="launched")

    assert orchestrator.process_opportunity("o1") is None
    assert orchestrator.process_opportunity("o1") is None
    assert fake_table.of_type("Venture") == []


def test_processing_twice_creates_a_single_venture(orchestrator, fake_table, add_opportunity):
    add_opportunity("o1")

    first = orchestrator.process_opportunity("o1")
    second = orchestrator.process_opportunity("o1")

    assert first is not None
    assert second is None
    assert len(fake_table.of_type("Venture")) == 1
    assert len(fake_table.of_type("OrchestrationEvent")) == 1


def test_concurrent_runs_for_one_id_create_a_single_venture(orchestrator, fake_table, add_opportunity):
    add_opportunity("o1")

    with ThreadPoolExecutor(max_workers=4) as ex:
        results = list(ex.map(orchestrator.process_opportunity, ["o1"] * 4))

    assert len([r for r in results if r]) == 1
    assert len(fake_table.of_type("Venture")) == 1


def test_status_moved_by_another_writer_rolls_back_the_commit(orchestrator, fake_table, add_opportunity):
    add_opportunity("o1")

    def other_writer(table):
        OpportunityRepository(table).update("o1", {"status": "matched"})

    fake_table.before_transact = other_writer

    assert orchestrator.process_opportunity("o1") is None
    assert fake_table.of_type("Venture") == []
    assert fake_table.of_type("OrchestrationEvent") == []


def test_legacy_status_is_processed_as_pending(orchestrator, fake_table, add_opportunity):
    add_opportunity("o1")
    fake_table.items[tuple(opportunity_key("o1").values())]["status"] = "detected"

    assert orchestrator.process_opportunity("o1") is not None
    assert _status(fake_table, "o1") == OpportunityStatus.MATCHED


def test_provisioning_failure_is_recorded_not_raised(orchestrator, fake_table, repo_client, add_opportunity):
    add_opportunity("o1")
    repo_client.provision_ok = False

    venture_id = orchestrator.process_opportunity("o1")

    assert venture_id is not None
    venture = VentureRepository(fake_table).get(venture_id)
    assert venture.provisioning_status == "failed"
    assert venture.provisioning_error == "Repository creation failed"
    assert _status(fake_table, "o1") == OpportunityStatus.MATCHED
    assert fake_table.of_type("OrchestrationEvent")[0]["payload"]["provisioningStatus"] == "failed"


def test_provisioning_exception_is_captured(orchestrator, fake_table, repo_client, add_opportunity, monkeypatch):
    add_opportunity("o1")

    def explode(**_kw):
        raise RuntimeError("host unreachable")

    monkeypatch.setattr(repo_client, "create_from_template", explode)

    venture_id = orchestrator.process_opportunity("o1")
    venture = VentureRepository(fake_table).get(venture_id)
    assert venture.provisioning_status == "failed"
    assert venture.provisioning_error == "host unreachable"


def test_disabled_provisioning_is_recorded_as_skipped(repo_client, fake_table, add_opportunity):
    settings = Settings(NODE_ENV="test", DDB_TABLE_NAME="nexus-test", PROVISIONING_ENABLED=False)
    orch = build_orchestrator(settings, client=repo_client, table=fake_table)
    add_opportunity("o1")

    venture_id = orch.process_opportunity("o1")

    assert VentureRepository(fake_table).get(venture_id).provisioning_status == "skipped"
    assert repo_client.created == []


def test_immediate_activation_launches_the_venture(repo_client, fake_table, add_opportunity):
    settings = Settings(NODE_ENV="test", DDB_TABLE_NAME="nexus-test", IMMEDIATE_ACTIVATION=True)
    orch = build_orchestrator(settings, client=repo_client, table=fake_table)
    add_opportunity("o1")

    venture_id = orch.process_opportunity("o1")

    assert _status(fake_table, "o1") == OpportunityStatus.LAUNCHED
    assert VentureRepository(fake_table).get(venture_id).status == "active"
    assert [v.id for v in VentureRepository(fake_table).list_by_status("active")] == [venture_id]
