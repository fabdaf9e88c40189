"""Models for the broker action queue, action lifecycle state, and contact log."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from broker_ops.models.loads import WireModel


class ActionType(str, Enum):
    CALL = "CALL"
    TEXT = "TEXT"
    MAP = "MAP"
    EMAIL = "EMAIL"
    NOTE = "NOTE"


class ActionStatus(str, Enum):
    """Operator-driven lifecycle of a derived action."""

    OPEN = "OPEN"
    DONE = "DONE"
    SNOOZED = "SNOOZED"


class ContactMethod(str, Enum):
    CALL = "CALL"
    TEXT = "TEXT"
    MAP = "MAP"
    EMAIL = "EMAIL"


class ExceptionLike(WireModel):
    """Exception as seen by the action deriver: a code plus an optional time-pressure hint."""

    code: str
    due_at_iso: Optional[str] = None


class ActionDeriveLoad(WireModel):
    """Attention-worthy load reduced to what the action deriver needs."""

    load_id: str
    lane: Optional[str] = None
    carrier_phone: Optional[str] = None
    driver_phone: Optional[str] = None
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None
    exceptions: List[ExceptionLike] = Field(default_factory=list)


class BrokerAction(WireModel):
    """One concrete operator action. Re-derived every tick; id is loadId__ruleId."""

    id: str
    load_id: str
    title: str
    detail: Optional[str] = None
    action_type: ActionType
    href: Optional[str] = None
    priority: int = Field(ge=1, le=3)
    due_at_iso: Optional[str] = None
    created_at_iso: str
    status: ActionStatus = ActionStatus.OPEN
    rule_id: str


class ActionStateEntry(WireModel):
    """Persisted lifecycle state for one action id."""

    status: ActionStatus
    snooze_until_iso: Optional[str] = None
    updated_at_iso: str


ActionStateMap = Dict[str, ActionStateEntry]


class ActionOverlay(WireModel):
    """Derived actions with persisted lifecycle state applied."""

    actions: List[BrokerAction] = Field(default_factory=list)
    state: Dict[str, ActionStateEntry] = Field(default_factory=dict)


class ContactLogEntry(WireModel):
    """Audit record of one outreach attempt."""

    id: str
    action_id: str
    load_id: str
    method: ContactMethod
    at_iso: str
