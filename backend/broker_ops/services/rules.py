"""
Exception rules for broker loads.

Each rule is a pure function of (load, now) returning at most one
exception. Rules never suppress each other; status aggregation happens in
the evaluator and action selection in the action deriver.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from broker_ops.core.timeutil import HOUR_MS, parse_iso_ms, to_ms
from broker_ops.models.loads import ExceptionCode, Load, LoadException, LoadStatus, Severity

GPS_WATCH_MINUTES = 60
GPS_RISK_AFTER_MINUTES = 120
PICKUP_SOON_HOURS = 2
DELIVERY_SOON_HOURS = 4

# Higher is more urgent. Only meaningful for ordering within one load.
SCORES = {
    "NO_GPS": 1000,
    "PICKUP_LATE": 950,
    "DELIVERY_LATE": 900,
    "GPS_STALE_RISK": 850,
    "GPS_STALE_WATCH": 450,
    "PICKUP_WINDOW_SOON": 350,
    "DELIVERY_WINDOW_SOON": 300,
}

Rule = Callable[[Load, float], Optional[LoadException]]


def _is_late(now_ms: float, window_end_iso: Optional[str]) -> bool:
    return now_ms > parse_iso_ms(window_end_iso)


def _starts_within(now_ms: float, window_start_iso: str, within_ms: float) -> bool:
    start_ms = parse_iso_ms(window_start_iso)
    if now_ms >= start_ms:
        return False
    return start_ms - now_ms <= within_ms


def rule_no_gps(load: Load, now_ms: float) -> Optional[LoadException]:
    if load.last_gps_minutes_ago is not None:
        return None
    return LoadException(
        code=ExceptionCode.NO_GPS,
        severity=Severity.RISK,
        status=LoadStatus.RED,
        title="No GPS",
        detail="No GPS data received for this load.",
        next_action="Contact driver/carrier to restore tracking immediately.",
        score=SCORES["NO_GPS"],
    )


def rule_gps_stale(load: Load, now_ms: float) -> Optional[LoadException]:
    minutes = load.last_gps_minutes_ago
    if minutes is None:
        return None

    if GPS_WATCH_MINUTES <= minutes <= GPS_RISK_AFTER_MINUTES:
        return LoadException(
            code=ExceptionCode.GPS_STALE,
            severity=Severity.WATCH,
            status=LoadStatus.YELLOW,
            title="GPS stale",
            detail=f"GPS last updated {minutes} minutes ago.",
            next_action="Ping driver/carrier for a fresh location update.",
            score=SCORES["GPS_STALE_WATCH"],
        )

    if minutes > GPS_RISK_AFTER_MINUTES:
        return LoadException(
            code=ExceptionCode.GPS_STALE,
            severity=Severity.RISK,
            status=LoadStatus.RED,
            title="GPS very stale",
            detail=f"GPS last updated {minutes} minutes ago.",
            next_action="Call driver/carrier - confirm location and ETA now.",
            score=SCORES["GPS_STALE_RISK"],
        )

    return None


def rule_pickup_late(load: Load, now_ms: float) -> Optional[LoadException]:
    if not load.pickup_window_end_iso or not _is_late(now_ms, load.pickup_window_end_iso):
        return None
    return LoadException(
        code=ExceptionCode.PICKUP_LATE,
        severity=Severity.RISK,
        status=LoadStatus.RED,
        title="Pickup late",
        detail=f"Pickup window ended at {load.pickup_window_end_iso}.",
        next_action="Call shipper + carrier to confirm pickup status and recovery plan.",
        score=SCORES["PICKUP_LATE"],
    )


def rule_delivery_late(load: Load, now_ms: float) -> Optional[LoadException]:
    if not load.delivery_window_end_iso or not _is_late(now_ms, load.delivery_window_end_iso):
        return None
    return LoadException(
        code=ExceptionCode.DELIVERY_LATE,
        severity=Severity.RISK,
        status=LoadStatus.RED,
        title="Delivery late",
        detail=f"Delivery window ended at {load.delivery_window_end_iso}.",
        next_action="Call consignee + carrier to confirm delivery status and update customer.",
        score=SCORES["DELIVERY_LATE"],
    )


def rule_pickup_window_soon(load: Load, now_ms: float) -> Optional[LoadException]:
    if load.pickup_window_end_iso and _is_late(now_ms, load.pickup_window_end_iso):
        return None
    if not load.pickup_window_start_iso:
        return None
    if not _starts_within(now_ms, load.pickup_window_start_iso, PICKUP_SOON_HOURS * HOUR_MS):
        return None
    return LoadException(
        code=ExceptionCode.PICKUP_WINDOW_SOON,
        severity=Severity.WATCH,
        status=LoadStatus.YELLOW,
        title="Pickup window soon",
        detail=f"Pickup window starts at {load.pickup_window_start_iso}.",
        next_action="Confirm driver check-in and pickup readiness.",
        score=SCORES["PICKUP_WINDOW_SOON"],
    )


def rule_delivery_window_soon(load: Load, now_ms: float) -> Optional[LoadException]:
    if load.delivery_window_end_iso and _is_late(now_ms, load.delivery_window_end_iso):
        return None
    if not load.delivery_window_start_iso:
        return None
    if not _starts_within(now_ms, load.delivery_window_start_iso, DELIVERY_SOON_HOURS * HOUR_MS):
        return None
    return LoadException(
        code=ExceptionCode.DELIVERY_WINDOW_SOON,
        severity=Severity.WATCH,
        status=LoadStatus.YELLOW,
        title="Delivery window soon",
        detail=f"Delivery window starts at {load.delivery_window_start_iso}.",
        next_action="Confirm ETA and communicate delivery plan if needed.",
        score=SCORES["DELIVERY_WINDOW_SOON"],
    )


# Late rules run before "soon" rules; NO_GPS before GPS_STALE.
RULES: tuple[Rule, ...] = (
    rule_no_gps,
    rule_gps_stale,
    rule_pickup_late,
    rule_delivery_late,
    rule_pickup_window_soon,
    rule_delivery_window_soon,
)


def evaluate_rules(load: Load, *, now: datetime) -> List[LoadException]:
    """Run every rule against one load and collect the exceptions that fire."""
    now_ms = to_ms(now)
    exceptions: List[LoadException] = []
    for rule in RULES:
        exception = rule(load, now_ms)
        if exception is not None:
            exceptions.append(exception)
    return exceptions
