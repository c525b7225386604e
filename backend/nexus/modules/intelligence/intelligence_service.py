from __future__ import annotations

from ...domain.models import Opportunity, OpportunityStatus, SyncResult
from ...observability.logging import get_logger
from ...repositories.opportunities_repo import OpportunityRepository


log = get_logger("intelligence")

DEFAULT_CONFIDENCE_THRESHOLD = 0.70


def is_structurally_complete(opp: Opportunity) -> bool:
    return all(str(v or "").strip() for v in (opp.title, opp.description, opp.vertical))


class IntelligenceModule:
    def __init__(self, *, opportunities: OpportunityRepository, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD):
        self._opportunities = opportunities
        self.threshold = float(threshold)

    def passes(self, opp: Opportunity) -> bool:
        return is_structurally_complete(opp) and float(opp.confidence_score) > self.threshold

    def validate(self, opportunity_id: str) -> bool:
        """
        True only for a complete opportunity whose confidence is strictly above
        the threshold. "Not found" and "invalid" are deliberately the same
        answer: callers cannot tell them apart, and nothing is raised.
        """
        try:
            opp = self._opportunities.get(opportunity_id)
        except Exception as e:  # noqa: BLE001
            log.warning("opportunity_lookup_failed", opportunity_id=opportunity_id, error=str(e))
            return False
        if opp is None:
            log.info("opportunity_validation_failed", opportunity_id=opportunity_id, reason="not_found")
            return False
        if not is_structurally_complete(opp):
            log.info("opportunity_validation_failed", opportunity_id=opportunity_id, reason="incomplete")
            return False
        if not float(opp.confidence_score) > self.threshold:
            log.info(
                "opportunity_validation_failed",
                opportunity_id=opportunity_id,
                reason="low_confidence",
                confidence=opp.confidence_score,
                threshold=self.threshold,
            )
            return False
        return True

    def detect_opportunities(self, *, limit: int | None = None) -> list[Opportunity]:
        """Opportunities awaiting processing, newest first."""
        return self._opportunities.list_by_status(OpportunityStatus.PENDING, limit=limit)

    def analyze_market_gap(self, vertical: str) -> float:
        """Mean confidence of live opportunities in a vertical (0.0 when there are none)."""
        needle = str(vertical or "").strip().lower()
        if not needle:
            return 0.0
        scores = [
            float(o.confidence_score)
            for o in self._opportunities.list_all()
            if o.vertical.strip().lower() == needle and o.status != OpportunityStatus.CANCELLED
        ]
        return sum(scores) / len(scores) if scores else 0.0

    def sync(self) -> SyncResult:
        try:
            pending = self.detect_opportunities()
        except Exception as e:  # noqa: BLE001
            log.warning("intelligence_sync_failed", error=str(e) or type(e).__name__)
            return SyncResult.failed(f"Opportunity detection failed: {e}")
        ready = sum(1 for o in pending if self.passes(o))
        return SyncResult.ok(
            f"{len(pending)} pending opportunities, {ready} ready for processing",
            payload={"pending": len(pending), "ready": ready},
        )
