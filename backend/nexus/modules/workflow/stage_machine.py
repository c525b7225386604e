from __future__ import annotations

from ...domain.models import OpportunityStatus


S = OpportunityStatus

# Forward-only. `cancelled` is reachable from any non-terminal state (externally).
STATUS_TRANSITIONS: dict[OpportunityStatus, frozenset[OpportunityStatus]] = {
    S.PENDING: frozenset({S.VALIDATED, S.MATCHED, S.LAUNCHED, S.CANCELLED}),
    S.VALIDATED: frozenset({S.MATCHED, S.LAUNCHED, S.CANCELLED}),
    S.MATCHED: frozenset({S.LAUNCHED, S.CANCELLED}),
    S.LAUNCHED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Statuses the pipeline may pick up; anything else has already been processed.
PROCESSABLE: frozenset[OpportunityStatus] = frozenset({S.PENDING, S.VALIDATED})


def is_terminal(status: OpportunityStatus | str) -> bool:
    return not STATUS_TRANSITIONS[OpportunityStatus.coerce(status)]


def is_valid_transition(current: OpportunityStatus | str, target: OpportunityStatus | str) -> bool:
    return OpportunityStatus.coerce(target) in STATUS_TRANSITIONS[OpportunityStatus.coerce(current)]


def pipeline_target(*, immediate_activation: bool) -> OpportunityStatus:
    return S.LAUNCHED if immediate_activation else S.MATCHED


def already_advanced() -> frozenset[OpportunityStatus]:
    """Statuses that block a pipeline run (used for the conditional status write)."""
    return frozenset(s for s in OpportunityStatus if s not in PROCESSABLE)


def blocked_sources(target: OpportunityStatus | str) -> frozenset[OpportunityStatus]:
    """Stored statuses a write of `target` must not land on (it would move backwards)."""
    t = OpportunityStatus.coerce(target)
    return frozenset(s for s in OpportunityStatus if s != t and not is_valid_transition(s, t))
