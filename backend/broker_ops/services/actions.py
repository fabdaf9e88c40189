"""
Derive the broker action queue from exceptions on attention-worthy loads.

One action per load at most, picked by walking a fixed precedence table
rather than by severity. Loads whose exceptions match no table entry
contribute nothing, which keeps the queue from flooding.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence
from urllib.parse import quote, urlencode

from broker_ops.models.actions import ActionDeriveLoad, ActionType, BrokerAction, ExceptionLike
from broker_ops.models.loads import EvaluatedLoad, ExceptionCode, LoadStatus

# Deriver-only code for a GPS_STALE exception at red status.
GPS_STALE_RED = "GPS_STALE_RED"

# Characters encodeURIComponent leaves alone.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """Keep '+' and digits only."""
    if not raw:
        return None
    cleaned = re.sub(r"[^\d+]", "", raw.strip())
    return cleaned or None


def tel_href(phone: Optional[str]) -> Optional[str]:
    number = normalize_phone(phone)
    return f"tel:{number}" if number else None


def sms_href(phone: Optional[str], body: Optional[str] = None) -> Optional[str]:
    number = normalize_phone(phone)
    if not number:
        return None
    if body:
        return f"sms:{number}?&body={quote(body, safe=_URI_COMPONENT_SAFE)}"
    return f"sms:{number}"


def maps_href(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    return f"https://www.google.com/maps/search/?api=1&query={quote(address, safe=_URI_COMPONENT_SAFE)}"


def mailto_href(
    load_id: str,
    dispatch_email: Optional[str] = None,
    driver_email: Optional[str] = None,
    subject: Optional[str] = None,
    body_lines: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """Email dispatch (cc driver), or the driver alone. None when neither address looks valid."""
    dispatch = dispatch_email if dispatch_email and "@" in dispatch_email else None
    driver = driver_email if driver_email and "@" in driver_email else None
    if not dispatch and not driver:
        return None

    to = dispatch or driver
    params = {}
    if dispatch and driver:
        params["cc"] = driver
    params["subject"] = subject or f"Load {load_id} - Update Needed"
    lines = list(body_lines) if body_lines else [f"Load: {load_id}", "", "Please confirm current status and ETA."]
    params["body"] = "\n".join(lines)
    return f"mailto:{quote(to, safe=_URI_COMPONENT_SAFE)}?{urlencode(params)}"


@dataclass(frozen=True)
class ContactContext:
    carrier_phone: Optional[str] = None
    driver_phone: Optional[str] = None
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None

    @property
    def phone(self) -> Optional[str]:
        return self.carrier_phone or self.driver_phone


@dataclass(frozen=True)
class ActionRule:
    rule_id: str
    priority: int
    action_type: ActionType
    title_text: str
    detail: Optional[str]
    href: Callable[[ContactContext], Optional[str]]

    def title(self, lane: Optional[str]) -> str:
        return f"{self.title_text} ({lane})" if lane else self.title_text


RULES = {
    "NO_GPS_CALL": ActionRule(
        rule_id="NO_GPS_CALL",
        priority=1,
        action_type=ActionType.CALL,
        title_text="Call carrier: location update",
        detail="Confirm truck location and next check-in time.",
        href=lambda ctx: tel_href(ctx.phone),
    ),
    "GPS_STALE_TEXT": ActionRule(
        rule_id="GPS_STALE_TEXT",
        priority=1,
        action_type=ActionType.TEXT,
        title_text="Text carrier: send location",
        detail="Request updated location + ETA.",
        href=lambda ctx: sms_href(ctx.phone, "Please send current location and ETA. Thanks."),
    ),
    "PICKUP_STATUS_CALL": ActionRule(
        rule_id="PICKUP_STATUS_CALL",
        priority=1,
        action_type=ActionType.CALL,
        title_text="Call carrier: confirm pickup status",
        detail="Confirm arrival, check-in, and pickup ETA.",
        href=lambda ctx: tel_href(ctx.phone),
    ),
    "PICKUP_WINDOW_CALL": ActionRule(
        rule_id="PICKUP_WINDOW_CALL",
        priority=2,
        action_type=ActionType.CALL,
        title_text="Call carrier: pickup window soon",
        detail="Confirm they will make the pickup window.",
        href=lambda ctx: tel_href(ctx.phone),
    ),
    "DELIVERY_ETA_TEXT": ActionRule(
        rule_id="DELIVERY_ETA_TEXT",
        priority=1,
        action_type=ActionType.TEXT,
        title_text="Text carrier: delivery ETA update",
        detail="Get ETA and update consignee if needed.",
        href=lambda ctx: sms_href(ctx.phone, "Please confirm updated delivery ETA. Thanks."),
    ),
    "DELIVERY_WINDOW_TEXT": ActionRule(
        rule_id="DELIVERY_WINDOW_TEXT",
        priority=2,
        action_type=ActionType.TEXT,
        title_text="Text carrier: delivery window soon",
        detail="Confirm ETA to meet delivery window.",
        href=lambda ctx: sms_href(ctx.phone, "Delivery window is coming up - please confirm ETA. Thanks."),
    ),
}

# First matching entry wins. A yellow GPS_STALE has no entry on purpose.
EXCEPTION_PRECEDENCE: tuple[tuple[tuple[str, ...], ActionRule], ...] = (
    ((ExceptionCode.NO_GPS.value,), RULES["NO_GPS_CALL"]),
    ((GPS_STALE_RED,), RULES["GPS_STALE_TEXT"]),
    ((ExceptionCode.PICKUP_LATE.value,), RULES["PICKUP_STATUS_CALL"]),
    ((ExceptionCode.DELIVERY_LATE.value,), RULES["DELIVERY_ETA_TEXT"]),
    ((ExceptionCode.PICKUP_WINDOW_SOON.value,), RULES["PICKUP_WINDOW_CALL"]),
    ((ExceptionCode.DELIVERY_WINDOW_SOON.value,), RULES["DELIVERY_WINDOW_TEXT"]),
)


def action_id(load_id: str, rule_id: str) -> str:
    return f"{load_id}__{rule_id}"


def pick_rule(exceptions: Sequence[ExceptionLike]) -> Optional[tuple[ActionRule, ExceptionLike]]:
    for codes, rule in EXCEPTION_PRECEDENCE:
        for exc in exceptions:
            if exc.code in codes:
                return rule, exc
    return None


def derive_actions(loads: Iterable[ActionDeriveLoad], now_iso: str) -> List[BrokerAction]:
    """Build at most one action per load, ordered by priority, due time, then creation time."""
    actions: List[BrokerAction] = []

    for load in loads:
        if not load.exceptions:
            continue
        picked = pick_rule(load.exceptions)
        if picked is None:
            continue

        rule, exc = picked
        contacts = ContactContext(
            carrier_phone=load.carrier_phone,
            driver_phone=load.driver_phone,
            pickup_address=load.pickup_address,
            delivery_address=load.delivery_address,
        )
        actions.append(
            BrokerAction(
                id=action_id(load.load_id, rule.rule_id),
                load_id=load.load_id,
                title=rule.title(load.lane),
                detail=rule.detail,
                action_type=rule.action_type,
                href=rule.href(contacts),
                priority=rule.priority,
                due_at_iso=exc.due_at_iso,
                created_at_iso=now_iso,
                rule_id=rule.rule_id,
            )
        )

    # A missing due time compares as "" and therefore sorts first within its priority.
    actions.sort(key=lambda action: (action.priority, action.due_at_iso or "", action.created_at_iso))
    return actions


def _deriver_code(load: EvaluatedLoad, code: ExceptionCode, status: LoadStatus) -> str:
    if code == ExceptionCode.GPS_STALE and status == LoadStatus.RED:
        return GPS_STALE_RED
    return code.value


def _due_at_for(load: EvaluatedLoad, code: ExceptionCode) -> Optional[str]:
    if code == ExceptionCode.PICKUP_LATE:
        return load.pickup_window_end_iso
    if code == ExceptionCode.PICKUP_WINDOW_SOON:
        return load.pickup_window_start_iso
    if code == ExceptionCode.DELIVERY_LATE:
        return load.delivery_window_end_iso
    if code == ExceptionCode.DELIVERY_WINDOW_SOON:
        return load.delivery_window_start_iso
    return None


def build_action_loads(loads: Iterable[EvaluatedLoad]) -> List[ActionDeriveLoad]:
    """Reduce red/yellow evaluated loads to deriver input."""
    out: List[ActionDeriveLoad] = []
    for load in loads:
        if load.computed_status == LoadStatus.GREEN or not load.exceptions:
            continue
        lane = " -> ".join(part for part in (load.origin_city_state, load.dest_city_state) if part) or None
        out.append(
            ActionDeriveLoad(
                load_id=load.id,
                lane=lane,
                carrier_phone=load.carrier_phone or None,
                driver_phone=load.driver_phone,
                pickup_address=load.pickup_address or load.origin_city_state or None,
                delivery_address=load.delivery_address or load.dest_city_state or None,
                exceptions=[
                    ExceptionLike(
                        code=_deriver_code(load, exc.code, exc.status),
                        due_at_iso=_due_at_for(load, exc.code),
                    )
                    for exc in load.exceptions
                ],
            )
        )
    return out
