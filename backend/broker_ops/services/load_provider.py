"""Raw load feeds and the normalization adapter in front of the evaluator."""
from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import httpx
from pydantic import ValidationError

from broker_ops.core.config import Settings, get_settings
from broker_ops.core.logging import logger
from broker_ops.models.loads import Load, LoadStatus


class LoadProviderError(RuntimeError):
    """The upstream load feed could not be read at all."""


# Ordered fallback paths per Load field; the first non-empty value wins.
FIELD_PATHS: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    "id": (("id",), ("loadId",), ("load_id",), ("loadNumber",)),
    "origin_city_state": (("originCityState",), ("origin_city_state",), ("origin", "cityState"), ("origin",)),
    "dest_city_state": (("destCityState",), ("dest_city_state",), ("destination", "cityState"), ("destination",)),
    "pickup_window_start_iso": (("pickupWindowStartISO",), ("pickup_window_start",), ("pickup", "windowStart")),
    "pickup_window_end_iso": (("pickupWindowEndISO",), ("pickup_window_end",), ("pickup", "windowEnd")),
    "delivery_window_start_iso": (("deliveryWindowStartISO",), ("delivery_window_start",), ("delivery", "windowStart")),
    "delivery_window_end_iso": (("deliveryWindowEndISO",), ("delivery_window_end",), ("delivery", "windowEnd")),
    "carrier_name": (("carrierName",), ("carrier_name",), ("carrier", "name")),
    "carrier_phone": (
        ("carrierPhone",),
        ("carrier_phone",),
        ("carrier", "phone"),
        ("contacts", "carrier", "phone"),
    ),
    "dispatch_phone": (("dispatchPhone",), ("dispatch_phone",), ("contacts", "dispatch", "phone")),
    "driver_phone": (("driverPhone",), ("driver_phone",), ("driver", "phone"), ("contacts", "driver", "phone")),
    "dispatch_email": (("dispatchEmail",), ("dispatch_email",), ("contacts", "dispatch", "email")),
    "driver_email": (("driverEmail",), ("driver_email",), ("driver", "email"), ("contacts", "driver", "email")),
    "pickup_address": (("pickupAddress",), ("pickup_address",), ("pickup", "address")),
    "delivery_address": (("deliveryAddress",), ("delivery_address",), ("delivery", "address")),
    "last_gps_minutes_ago": (("lastGpsMinutesAgo",), ("last_gps_minutes_ago",), ("tracking", "lastGpsMinutesAgo")),
    "status": (("status",),),
    "risk_reason": (("riskReason",), ("risk_reason",)),
    "next_action": (("nextAction",), ("next_action",)),
}


def _lookup(raw: Dict[str, Any], paths: Sequence[Tuple[str, ...]]) -> Any:
    for path in paths:
        value: Any = raw
        for part in path:
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(part)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        if isinstance(value, dict):
            continue
        return value
    return None


TEXT_FIELDS = tuple(name for name in FIELD_PATHS if name not in {"id", "last_gps_minutes_ago", "status"})


def _coerce_text(value: Any) -> Optional[str]:
    """Upstream feeds send phones and ids as numbers; keep scalars as text, drop the rest."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    return None


def _coerce_minutes(value: Any, load_id: str) -> Optional[int]:
    """Whole minutes since the last ping. Fractions are floored; unusable values mean no GPS."""
    if isinstance(value, bool):
        minutes = None
    elif isinstance(value, (int, float)):
        minutes = value
    else:
        try:
            minutes = float(str(value).strip())
        except ValueError:
            minutes = None
    if minutes is None or math.isnan(minutes) or math.isinf(minutes) or minutes < 0:
        logger.warning("Unusable GPS age; treating as no GPS", load_id=load_id, value=str(value))
        return None
    return int(math.floor(minutes))


def normalize_load(raw: Dict[str, Any]) -> Load:
    """Map one heterogeneous upstream record onto the strict Load model."""
    if not isinstance(raw, dict):
        raise ValueError("load record must be an object")
    fields: Dict[str, Any] = {}
    for name, paths in FIELD_PATHS.items():
        value = _lookup(raw, paths)
        if value is not None:
            fields[name] = value
    load_id = _coerce_text(fields.get("id"))
    if load_id is None:
        raise ValueError("load record has no id")
    fields["id"] = load_id

    for name in TEXT_FIELDS:
        if name in fields:
            text = _coerce_text(fields[name])
            if text is None:
                fields.pop(name)
            else:
                fields[name] = text
    if "last_gps_minutes_ago" in fields:
        fields["last_gps_minutes_ago"] = _coerce_minutes(fields["last_gps_minutes_ago"], load_id)
    # The human-authored status is a display fallback only; drop unknown values.
    if fields.get("status") not in {status.value for status in LoadStatus}:
        fields.pop("status", None)

    return Load.model_validate(fields)


def normalize_loads(rows: Iterable[Any]) -> List[Load]:
    loads: List[Load] = []
    for index, raw in enumerate(rows):
        try:
            loads.append(normalize_load(raw))
        except (ValueError, ValidationError) as exc:
            logger.warning("Skipping malformed load record", index=index, error=str(exc))
    return loads


def _rows_from_payload(payload: Any) -> List[Any]:
    if isinstance(payload, dict):
        payload = payload.get("loads")
    if not isinstance(payload, list):
        raise LoadProviderError("Invalid load feed: expected a JSON array or an object with 'loads'.")
    return payload


class LoadProvider(Protocol):
    def fetch(self) -> List[Load]:
        ...


class StaticLoadProvider:
    """Serves a fixed list; used for tests and embedding."""

    def __init__(self, loads: Optional[Iterable[Load]] = None) -> None:
        self._loads = list(loads or [])

    def replace(self, loads: Iterable[Load]) -> None:
        self._loads = list(loads)

    def fetch(self) -> List[Load]:
        return list(self._loads)


class JsonFileLoadProvider:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def fetch(self) -> List[Load]:
        if not self._path.exists():
            return []
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            raise LoadProviderError(f"Failed to read load file {self._path}: {exc}") from exc
        return normalize_loads(_rows_from_payload(payload))


class HttpLoadProvider:
    def __init__(self, url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    def fetch(self) -> List[Load]:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(self._url)
                response.raise_for_status()
                payload = response.json()
        except Exception as exc:
            raise LoadProviderError(f"Load feed request failed: {exc}") from exc
        return normalize_loads(_rows_from_payload(payload))


def build_load_provider(settings: Optional[Settings] = None) -> LoadProvider:
    settings = settings or get_settings()
    url = (settings.loads_url or "").strip()
    if url:
        return HttpLoadProvider(url, timeout=settings.loads_timeout_seconds)
    return JsonFileLoadProvider(settings.loads_path)
