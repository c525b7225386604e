from __future__ import annotations

import math
from typing import Iterable

from ...domain.models import Opportunity, OpportunityStatus, SyncResult, Venture
from ...errors import InvalidArgument
from ...observability.logging import get_logger
from ...repositories.opportunities_repo import OpportunityRepository
from ...repositories.ventures_repo import VentureRepository


log = get_logger("financial")

StatusFilter = OpportunityStatus | str | Iterable[OpportunityStatus | str] | None


def _money(v: float) -> float:
    """Negative or non-finite amounts count as zero (unparseable ones already read as 0.0)."""
    f = float(v)
    if not math.isfinite(f) or f < 0:
        return 0.0
    return f


def _status_set(status_filter: StatusFilter) -> set[OpportunityStatus] | None:
    if status_filter is None:
        return None
    if isinstance(status_filter, (str, OpportunityStatus)):
        return {OpportunityStatus.coerce(status_filter)}
    return {OpportunityStatus.coerce(s) for s in status_filter}


def project_growth(current_total: float, periods: int, growth_rate: float) -> list[float]:
    """V*(1+r)^1 ... V*(1+r)^periods. Pure."""
    if isinstance(periods, bool) or not isinstance(periods, int):
        raise InvalidArgument("periods must be an integer")
    if periods < 0:
        raise InvalidArgument("periods must be >= 0", details={"periods": periods})
    base = float(current_total)
    factor = 1.0 + float(growth_rate)
    return [base * factor**i for i in range(1, periods + 1)]


class FinancialModule:
    """Monetary aggregates over the opportunity and venture stores. Holds no state of its own."""

    def __init__(
        self,
        *,
        opportunities: OpportunityRepository,
        ventures: VentureRepository,
        default_growth_rate: float = 0.15,
    ):
        self._opportunities = opportunities
        self._ventures = ventures
        self.default_growth_rate = default_growth_rate

    def aggregate_by_status(self, opportunities: list[Opportunity] | None = None) -> dict[str, int]:
        rows = self._opportunities.list_all() if opportunities is None else opportunities
        counts = {s.value: 0 for s in OpportunityStatus}
        for opp in rows:
            counts[OpportunityStatus.coerce(opp.status).value] += 1
        return counts

    def total_estimated_value(
        self,
        status_filter: StatusFilter = None,
        opportunities: list[Opportunity] | None = None,
    ) -> float:
        wanted = _status_set(status_filter)
        rows = self._opportunities.list_all() if opportunities is None else opportunities
        return sum(
            _money(o.estimated_value) for o in rows if wanted is None or o.status in wanted
        )

    def forecast(self, periods: int, growth_rate: float, current_total: float | None = None) -> list[float]:
        # Validate before touching the store.
        project_growth(0.0, periods, growth_rate)
        base = self.total_revenue() if current_total is None else current_total
        return project_growth(base, periods, growth_rate)

    def forecast_revenue(self, months: int = 12) -> list[float]:
        return self.forecast(months, self.default_growth_rate)

    def total_revenue(self) -> float:
        return sum(_money(v.mrr) for v in self._ventures.list_by_status("active"))

    def track_venture_revenue(self, venture_id: str, mrr: float) -> Venture | None:
        amount = float(mrr)
        if not math.isfinite(amount) or amount < 0:
            raise InvalidArgument("mrr must be a non-negative number", details={"mrr": mrr})
        venture = self._ventures.get(venture_id)
        if venture is None:
            return None
        if amount < venture.mrr:
            raise InvalidArgument(
                "revenue metric cannot decrease",
                details={"current": venture.mrr, "requested": amount},
            )
        updated = self._ventures.update(venture_id, {"mrr": amount})
        log.info("venture_revenue_tracked", venture_id=venture_id, mrr=amount)
        return updated

    def sync(self) -> SyncResult:
        try:
            rows = self._opportunities.list_all()
            payload = {
                "opportunities": len(rows),
                "byStatus": self.aggregate_by_status(rows),
                "totalEstimatedValue": self.total_estimated_value(None, rows),
                "totalRevenue": self.total_revenue(),
            }
        except Exception as e:  # noqa: BLE001
            log.warning("financial_sync_failed", error=str(e) or type(e).__name__)
            return SyncResult.failed(f"Financial refresh failed: {e}")
        return SyncResult.ok(f"Refreshed financials for {payload['opportunities']} opportunities", payload=payload)
