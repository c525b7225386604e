from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure `backend/` is on sys.path so `import nexus.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))


def _eq_condition(cond: Any) -> tuple[str, Any]:
    # boto3 Key(...).eq(v) / Attr(...).eq(v) -> ("name", v)
    expr = cond.get_expression()
    assert expr["operator"] == "=", "only equality conditions are supported"
    attr, value = expr["values"]
    return attr.name, value


class FakeTable:
    """
    In-memory stand-in for DynamoTable used by the repositories.

    Supports just the expression shapes the repositories emit:
    `SET #f0 = :v0, ...` updates, `attribute_exists(pk)` /
    `attribute_not_exists(pk)` conditions, the `NOT #st IN (:done0, ...)`
    status guard, and single-attribute equality queries/scans.
    """

    def __init__(self):
        # Keyed by (pk, sk)
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.transactions: list[dict[str, Any]] = []
        # Runs right before a transaction is applied (simulates a concurrent writer).
        self.before_transact: Callable[["FakeTable"], None] | None = None
        self.fail_scans = False

    # --- helpers ---

    @staticmethod
    def _key(key_or_item: dict[str, Any]) -> tuple[str, str]:
        return str(key_or_item.get("pk") or ""), str(key_or_item.get("sk") or "")

    def of_type(self, entity_type: str) -> list[dict[str, Any]]:
        return [dict(it) for it in self.items.values() if it.get("entityType") == entity_type]

    def _condition_holds(
        self,
        cur: dict[str, Any] | None,
        condition: str | None,
        names: dict[str, str] | None,
        values: dict[str, Any] | None,
    ) -> bool:
        if not condition:
            return True
        if "attribute_not_exists(pk)" in condition and cur is not None:
            return False
        if "attribute_exists(pk)" in condition and cur is None:
            return False
        blocked = {v for k, v in (values or {}).items() if k.startswith(":done")}
        if blocked and cur is not None:
            attr = (names or {}).get("#st", "status")
            if cur.get(attr) in blocked:
                return False
        return True

    def _conflict(self, operation: str, key: dict[str, Any]):
        from nexus.db.dynamodb.errors import DdbConflict

        return DdbConflict(message="conditional check failed", operation=operation, table_name="Fake", key=key)

    @staticmethod
    def _apply_set(
        cur: dict[str, Any],
        update_expression: str,
        names: dict[str, str] | None,
        values: dict[str, Any],
    ) -> dict[str, Any]:
        assert update_expression.startswith("SET ")
        for assign in update_expression[len("SET ") :].split(","):
            left, right = (x.strip() for x in assign.split("=", 1))
            if left.startswith("#") and names:
                left = names.get(left, left)
            cur[left] = values.get(right)
        return cur

    # --- DynamoTable surface ---

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        it = self.items.get(self._key(key))
        return dict(it) if it is not None else None

    def put_item(self, *, item: dict[str, Any], condition_expression: str | None = None, **_kw) -> dict[str, Any]:
        k = self._key(item)
        if not self._condition_holds(self.items.get(k), condition_expression, None, None):
            raise self._conflict("PutItem", {"pk": k[0], "sk": k[1]})
        self.items[k] = dict(item)
        return {"ok": True}

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
        **_kw,
    ) -> dict[str, Any]:
        k = self._key(key)
        existing = self.items.get(k)
        if not self._condition_holds(existing, condition_expression, expression_attribute_names, expression_attribute_values):
            raise self._conflict("UpdateItem", dict(key))
        cur = dict(existing or {"pk": k[0], "sk": k[1]})
        self.items[k] = self._apply_set(cur, update_expression, expression_attribute_names, expression_attribute_values)
        return dict(self.items[k])

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = False,
        **_kw,
    ):
        from nexus.db.dynamodb.table import Page

        attr, value = _eq_condition(key_condition_expression)
        sort_attr = "gsi1sk" if index_name == "GSI1" else "sk"
        rows = [dict(it) for it in self.items.values() if it.get(attr) == value]
        rows.sort(key=lambda it: str(it.get(sort_attr) or ""), reverse=not scan_index_forward)
        return Page(items=rows[: max(1, int(limit))], next_token=None)

    def scan_all(self, *, filter_expression: Any | None = None, **_kw):
        if self.fail_scans:
            from nexus.db.dynamodb.errors import DdbUnavailable

            raise DdbUnavailable(message="scan unavailable", operation="Scan", table_name="Fake")
        for it in list(self.items.values()):
            if filter_expression is not None:
                attr, value = _eq_condition(filter_expression)
                if it.get(attr) != value:
                    continue
            yield dict(it)

    # --- transactions ---

    def tx_put(self, *, item: dict[str, Any], condition_expression: str | None = None, **_kw) -> dict[str, Any]:
        return {"Item": dict(item), "ConditionExpression": condition_expression}

    def tx_update(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        return {
            "Key": dict(key),
            "UpdateExpression": update_expression,
            "ExpressionAttributeNames": dict(expression_attribute_names or {}),
            "ExpressionAttributeValues": dict(expression_attribute_values),
            "ConditionExpression": condition_expression,
        }

    def transact_write(self, *, puts=(), updates=(), **_kw) -> dict[str, Any]:
        puts, updates = list(puts), list(updates)
        if self.before_transact is not None:
            hook, self.before_transact = self.before_transact, None
            hook(self)

        # All-or-nothing: check every condition before applying anything.
        for p in puts:
            k = self._key(p["Item"])
            if not self._condition_holds(self.items.get(k), p.get("ConditionExpression"), None, None):
                raise self._conflict("TransactWriteItems", {"pk": k[0], "sk": k[1]})
        for u in updates:
            k = self._key(u["Key"])
            if not self._condition_holds(
                self.items.get(k),
                u.get("ConditionExpression"),
                u.get("ExpressionAttributeNames"),
                u.get("ExpressionAttributeValues"),
            ):
                raise self._conflict("TransactWriteItems", dict(u["Key"]))

        for p in puts:
            self.items[self._key(p["Item"])] = dict(p["Item"])
        for u in updates:
            k = self._key(u["Key"])
            cur = dict(self.items.get(k) or {"pk": k[0], "sk": k[1]})
            self.items[k] = self._apply_set(
                cur, u["UpdateExpression"], u.get("ExpressionAttributeNames"), u["ExpressionAttributeValues"]
            )
        self.transactions.append({"puts": puts, "updates": updates})
        return {"ok": True}


class FakeRepositoryClient:
    """In-memory repository host: files, directories, org repos and a provisioning switch."""

    def __init__(self):
        self.files: dict[tuple[str, str, str], str] = {}
        self.dirs: dict[tuple[str, str, str], list[str]] = {}
        self.org_repos: list[dict[str, Any]] = []
        self.provision_ok = True
        self.created: list[dict[str, Any]] = []
        self.fetches = 0

    def fetch_file(self, owner: str, repo: str, path: str, branch: str | None = None) -> str | None:
        self.fetches += 1
        return self.files.get((owner, repo, path))

    def list_directory(self, owner: str, repo: str, path: str, branch: str | None = None) -> list[str]:
        return list(self.dirs.get((owner, repo, path), []))

    def create_from_template(self, **kw):
        from nexus.domain.models import ProvisionResult

        self.created.append(kw)
        if not self.provision_ok:
            return ProvisionResult(ok=False, repo_name=kw["name"], error="Repository creation failed")
        return ProvisionResult(
            ok=True,
            repo_name=kw["name"],
            repo_url=f"https://github.com/{kw['owner']}/{kw['name']}",
        )

    def list_org_repos(self, org: str, *, per_page: int = 100, max_pages: int = 10) -> list[dict[str, Any]]:
        return list(self.org_repos)


MANIFEST_PATH = ("Worldwidebro", "business-template-marketplace", "templates/manifest.json")


def manifest_json(*names: str) -> str:
    import json

    rows = []
    for n in names:
        slug = re.sub(r"[^a-z0-9]+", "-", n.lower()).strip("-")
        rows.append({"id": slug, "name": n, "category": "energy", "path": f"templates/{slug}", "version": "1.0.0"})
    return json.dumps({"templates": rows})


@pytest.fixture()
def fake_table() -> FakeTable:
    return FakeTable()


@pytest.fixture()
def repo_client() -> FakeRepositoryClient:
    c = FakeRepositoryClient()
    c.files[MANIFEST_PATH] = manifest_json("oil-refinery-template", "solar-farm-template")
    return c


@pytest.fixture()
def settings():
    from nexus.settings import Settings

    return Settings(NODE_ENV="test", DDB_TABLE_NAME="nexus-test", SYNC_ON_STARTUP=False)


@pytest.fixture()
def orchestrator(settings, repo_client, fake_table):
    from nexus.modules.orchestrator import build_orchestrator

    return build_orchestrator(settings, client=repo_client, table=fake_table)


@pytest.fixture()
def add_opportunity(fake_table):
    from nexus.domain.models import Opportunity
    from nexus.repositories.opportunities_repo import OpportunityRepository

    repo = OpportunityRepository(fake_table)

    def _add(id: str = "o1", **fields):
        data = {"vertical": "oil", "title": "X", "description": "Y", "confidence_score": 0.85}
        data.update(fields)
        return repo.create(Opportunity(id=id, **data))

    return _add
