"""
Base repository interface.

All record stores (opportunities, ventures, events, repo inventory) implement
this interface over a `DynamoTable`-shaped object, so tests can hand in an
in-memory fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from ..db.dynamodb.table import DynamoTable, get_main_table

T = TypeVar("T")


class Repository(ABC, Generic[T]):
    """Base repository interface."""

    def __init__(self, table: DynamoTable | Any | None = None):
        self._table = table

    @property
    def table(self) -> DynamoTable | Any:
        # Resolved lazily so constructing a repository never touches AWS.
        if self._table is None:
            self._table = get_main_table()
        return self._table

    @abstractmethod
    def get(self, id: str) -> T | None:
        """Get an entity by ID."""

    @abstractmethod
    def list(self, filters: dict[str, Any] | None = None) -> list[T]:
        """List entities matching equality filters."""

    @abstractmethod
    def create(self, entity: T) -> T:
        """Create a new entity."""

    @abstractmethod
    def update(self, id: str, updates: dict[str, Any]) -> T | None:
        """Update fields of an existing entity."""


def require_id(value: str | None, name: str) -> str:
    v = str(value or "").strip()
    if not v:
        raise ValueError(f"{name} is required")
    return v


def build_set_expression(fields: dict[str, Any]) -> tuple[str, dict[str, str], dict[str, Any]]:
    """`{"status": "x"}` -> ("SET #f0 = :v0", {"#f0": "status"}, {":v0": "x"})."""
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    parts: list[str] = []
    for i, (k, v) in enumerate(fields.items()):
        names[f"#f{i}"] = k
        values[f":v{i}"] = v
        parts.append(f"#f{i} = :v{i}")
    return "SET " + ", ".join(parts), names, values
