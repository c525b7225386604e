from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class OpportunityStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    MATCHED = "matched"
    LAUNCHED = "launched"
    CANCELLED = "cancelled"

    @classmethod
    def coerce(cls, value: Any) -> "OpportunityStatus":
        """Unknown, absent or legacy (`detected`) statuses read as pending."""
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


ProvisioningStatus = Literal["provisioned", "failed", "skipped"]
VentureStatus = Literal["generated", "active"]


class Opportunity(BaseModel):
    id: str
    vertical: str = ""
    title: str = ""
    description: str = ""
    confidence_score: float = 0.0
    estimated_value: float = 0.0
    status: OpportunityStatus = OpportunityStatus.PENDING
    created_at: str | None = None
    venture_id: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> OpportunityStatus:
        return OpportunityStatus.coerce(v)

    @field_validator("vertical", "title", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("confidence_score", "estimated_value", mode="before")
    @classmethod
    def _none_to_zero(cls, v: Any) -> float:
        # Records come from an external writer; an unreadable number counts as zero.
        if isinstance(v, bool):
            return 0.0
        try:
            f = float(v)
        except (TypeError, ValueError):
            return 0.0
        return f if math.isfinite(f) else 0.0


class TemplateDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    category: str = ""
    path: str = ""
    version: str = ""

    @field_validator("version", mode="before")
    @classmethod
    def _version_str(cls, v: Any) -> str:
        # Manifests written by hand often carry `version: 1.2` as a number.
        return "" if v is None else str(v)


class ProvisionResult(BaseModel):
    ok: bool
    repo_name: str | None = None
    repo_url: str | None = None
    error: str | None = None


class Venture(BaseModel):
    id: str
    opportunity_id: str
    template_id: str
    repo_name: str
    repo_url: str | None = None
    provisioning_status: ProvisioningStatus = "skipped"
    provisioning_error: str | None = None
    status: VentureStatus = "generated"
    mrr: float = 0.0
    created_at: str = Field(default_factory=now_iso)
    updated_at: str | None = None


class SyncResult(BaseModel):
    success: bool
    message: str
    payload: dict[str, Any] | None = None
    timestamp: str = Field(default_factory=now_iso)

    @classmethod
    def ok(cls, message: str, payload: dict[str, Any] | None = None) -> "SyncResult":
        return cls(success=True, message=message, payload=payload)

    @classmethod
    def failed(cls, message: str, payload: dict[str, Any] | None = None) -> "SyncResult":
        return cls(success=False, message=message, payload=payload)


class OrchestrationEvent(BaseModel):
    event_id: str | None = None
    event_type: str
    source: str
    target: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=now_iso)


class RepoInventoryEntry(BaseModel):
    repo_name: str
    repo_url: str | None = None
    role: str = "other"
    health_status: str = "active"
    last_sync: str = Field(default_factory=now_iso)
    metadata: dict[str, Any] = Field(default_factory=dict)
