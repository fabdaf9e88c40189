"""Aggregate rule output into a computed status, primary reason, and next action."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from broker_ops.core.logging import logger
from broker_ops.core.timeutil import utc_now
from broker_ops.models.loads import EvaluatedLoad, Load, LoadException, LoadStatus, Severity
from broker_ops.services.rules import evaluate_rules

DEFAULT_NEXT_ACTION = "No action required."

SEVERITY_RANK = {Severity.RISK: 2, Severity.WATCH: 1}

_LOAD_FIELDS = set(Load.model_fields)


def sort_exceptions(exceptions: Iterable[LoadException]) -> List[LoadException]:
    """Severity desc, then score desc, then code asc."""
    return sorted(
        exceptions,
        key=lambda exc: (-SEVERITY_RANK[exc.severity], -exc.score, exc.code.value),
    )


def computed_status(exceptions: Iterable[LoadException]) -> LoadStatus:
    statuses = {exc.status for exc in exceptions}
    if LoadStatus.RED in statuses:
        return LoadStatus.RED
    if LoadStatus.YELLOW in statuses:
        return LoadStatus.YELLOW
    return LoadStatus.GREEN


def primary_exception(evaluated: EvaluatedLoad) -> Optional[LoadException]:
    return evaluated.exceptions[0] if evaluated.exceptions else None


def _with_exceptions(load: Load, exceptions: List[LoadException]) -> EvaluatedLoad:
    status = computed_status(exceptions)
    primary = exceptions[0] if exceptions else None

    if status == LoadStatus.GREEN:
        risk_reason = None
        next_action = DEFAULT_NEXT_ACTION
    else:
        risk_reason = primary.detail if primary else "Needs attention."
        next_action = primary.next_action if primary else "Review load."

    return EvaluatedLoad(
        **load.model_dump(include=_LOAD_FIELDS),
        computed_status=status,
        computed_risk_reason=risk_reason,
        computed_next_action=next_action,
        exceptions=exceptions,
    )


def evaluate_load(load: Load, now: Optional[datetime] = None) -> EvaluatedLoad:
    """Evaluate one load from scratch."""
    now = now or utc_now()
    exceptions = sort_exceptions(evaluate_rules(load, now=now))
    return _with_exceptions(load, exceptions)


def evaluate_all_loads(loads: Iterable[Load], now: Optional[datetime] = None) -> List[EvaluatedLoad]:
    """
    Evaluate every load, preserving input order.

    A failure on one load is logged and that load falls back to green with no
    exceptions; the rest of the batch is still evaluated.
    """
    now = now or utc_now()
    evaluated: List[EvaluatedLoad] = []
    for load in loads:
        try:
            evaluated.append(evaluate_load(load, now))
        except Exception as exc:
            logger.error("Load evaluation failed; treating as green", load_id=load.id, error=str(exc))
            evaluated.append(_with_exceptions(load, []))
    return evaluated
