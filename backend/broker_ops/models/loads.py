"""Domain models for loads, rule exceptions, snapshots, and notifications."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def wire_alias(name: str) -> str:
    """snake_case -> camelCase, keeping the ISO suffix upper-case (created_at_iso -> createdAtISO)."""
    camel = to_camel(name)
    if camel.endswith("Iso"):
        return f"{camel[:-3]}ISO"
    return camel


class WireModel(BaseModel):
    """Base model serialized with the dashboard's camelCase wire names."""

    model_config = ConfigDict(alias_generator=wire_alias, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class LoadStatus(str, Enum):
    """Aggregate traffic-light status of a load."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class Severity(str, Enum):
    """Exception severity. Encoded alongside status on purpose; callers branch on both."""

    WATCH = "watch"
    RISK = "risk"


class ExceptionCode(str, Enum):
    NO_GPS = "NO_GPS"
    GPS_STALE = "GPS_STALE"
    PICKUP_LATE = "PICKUP_LATE"
    DELIVERY_LATE = "DELIVERY_LATE"
    PICKUP_WINDOW_SOON = "PICKUP_WINDOW_SOON"
    DELIVERY_WINDOW_SOON = "DELIVERY_WINDOW_SOON"


class Load(WireModel):
    """A freight shipment as tracked by the dashboard (already normalized)."""

    id: str
    origin_city_state: str = ""
    dest_city_state: str = ""

    pickup_window_start_iso: Optional[str] = None
    pickup_window_end_iso: Optional[str] = None
    delivery_window_start_iso: Optional[str] = None
    delivery_window_end_iso: Optional[str] = None

    carrier_name: str = ""
    carrier_phone: str = ""
    dispatch_phone: Optional[str] = None
    driver_phone: Optional[str] = None
    dispatch_email: Optional[str] = None
    driver_email: Optional[str] = None

    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None

    # None means no GPS ping was ever received.
    last_gps_minutes_ago: Optional[int] = Field(default=None, ge=0)

    # Human-authored fallbacks, only shown when evaluation is bypassed.
    status: LoadStatus = LoadStatus.GREEN
    risk_reason: Optional[str] = None
    next_action: str = ""


class LoadException(WireModel):
    """One rule-detected problem on a load."""

    code: ExceptionCode
    severity: Severity
    status: LoadStatus
    title: str
    detail: str
    next_action: str
    score: int


class EvaluatedLoad(Load):
    """A load plus its freshly derived exception state."""

    computed_status: LoadStatus = LoadStatus.GREEN
    computed_risk_reason: Optional[str] = None
    computed_next_action: str = ""
    exceptions: List[LoadException] = Field(default_factory=list)


class LoadSnapshot(WireModel):
    """Minimal per-load fingerprint used to detect transitions between ticks."""

    status: LoadStatus
    exception_codes: List[str] = Field(default_factory=list)


class Notification(WireModel):
    """Alert raised on a qualifying status transition."""

    id: str
    load_id: str
    created_at_iso: str
    severity: Severity
    status: LoadStatus
    message: str
    exception_code: ExceptionCode
    acked: bool = False


class StatusCounts(BaseModel):
    red: int = 0
    yellow: int = 0
