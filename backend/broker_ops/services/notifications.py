"""
Notification diffing between evaluation ticks.

Only escalations notify (green->yellow, green->red, yellow->red), and only
for loads that were already present in the previous snapshot, so the first
tick after startup is silent. De-escalations are silent by design.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set

from pydantic import ValidationError

from broker_ops.core.logging import logger
from broker_ops.models.loads import (
    EvaluatedLoad,
    ExceptionCode,
    LoadSnapshot,
    LoadStatus,
    Notification,
    Severity,
)
from broker_ops.services.kv_store import KeyValueStore, read_json, write_json

SNAPSHOTS_KEY = "broker.exceptionEngine.snapshots.v1"
NOTIFICATIONS_KEY = "broker.exceptionEngine.notifications.v1"
READ_IDS_KEY = "broker.exceptionEngine.notifications.readIds.v1"

SnapshotMap = Dict[str, LoadSnapshot]

NON_GREEN = {LoadStatus.YELLOW, LoadStatus.RED}


@dataclass
class NotificationDiff:
    notifications: List[Notification] = field(default_factory=list)
    next_snapshots: SnapshotMap = field(default_factory=dict)


def snapshot_from_evaluated(load: EvaluatedLoad) -> LoadSnapshot:
    return LoadSnapshot(
        status=load.computed_status,
        exception_codes=sorted(exc.code.value for exc in load.exceptions),
    )


def should_notify_transition(prev: Optional[LoadStatus], current: LoadStatus) -> bool:
    if prev is None:
        return False
    if prev == LoadStatus.GREEN:
        return current in NON_GREEN
    return prev == LoadStatus.YELLOW and current == LoadStatus.RED


def notification_id(load_id: str, code: str, created_at_iso: str) -> str:
    return f"{load_id}::{code}::{created_at_iso}"


def _primary_code(load: EvaluatedLoad) -> Optional[ExceptionCode]:
    return load.exceptions[0].code if load.exceptions else None


def _build_notification(load: EvaluatedLoad, code: ExceptionCode, created_at_iso: str) -> Notification:
    reason = load.computed_risk_reason or "Needs attention."
    return Notification(
        id=notification_id(load.id, code.value, created_at_iso),
        load_id=load.id,
        created_at_iso=created_at_iso,
        severity=Severity.RISK if load.computed_status == LoadStatus.RED else Severity.WATCH,
        status=load.computed_status,
        message=f"{code.value}: {reason}",
        exception_code=code,
        acked=False,
    )


def diff_notifications(
    prev: Mapping[str, LoadSnapshot],
    current: Iterable[EvaluatedLoad],
    created_at_iso: str,
    *,
    notify_on_code_change: bool = False,
) -> NotificationDiff:
    """
    Compare the previous snapshot map with freshly evaluated loads.

    The returned `next_snapshots` covers every load in `current`; loads missing
    from `current` are dropped.
    """
    diff = NotificationDiff()

    for load in current:
        snapshot = snapshot_from_evaluated(load)
        diff.next_snapshots[load.id] = snapshot

        prev_snapshot = prev.get(load.id)
        prev_status = prev_snapshot.status if prev_snapshot else None
        code = _primary_code(load)

        if should_notify_transition(prev_status, snapshot.status) and snapshot.status in NON_GREEN:
            if code is not None:
                diff.notifications.append(_build_notification(load, code, created_at_iso))
            continue

        if (
            notify_on_code_change
            and prev_snapshot is not None
            and prev_snapshot.status in NON_GREEN
            and snapshot.status in NON_GREEN
            and prev_snapshot.exception_codes != snapshot.exception_codes
            and code is not None
        ):
            diff.notifications.append(_build_notification(load, code, created_at_iso))

    return diff


class SnapshotStore:
    """Persists the snapshot map between ticks."""

    def __init__(self, kv: KeyValueStore, key: str = SNAPSHOTS_KEY) -> None:
        self._kv = kv
        self._key = key

    def load(self) -> SnapshotMap:
        payload = read_json(self._kv, self._key, {})
        if not isinstance(payload, dict):
            return {}
        snapshots: SnapshotMap = {}
        for load_id, raw in payload.items():
            try:
                snapshots[str(load_id)] = LoadSnapshot.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Dropping malformed snapshot", load_id=load_id, error=str(exc))
        return snapshots

    def save(self, snapshots: Mapping[str, LoadSnapshot]) -> None:
        write_json(self._kv, self._key, {load_id: snap.to_wire() for load_id, snap in snapshots.items()})


class NotificationFeed:
    """Newest-first notification list with a separate read-id set."""

    def __init__(self, kv: KeyValueStore, limit: int = 100) -> None:
        self._kv = kv
        self._limit = limit

    def _load_raw(self) -> List[Notification]:
        payload = read_json(self._kv, NOTIFICATIONS_KEY, [])
        if not isinstance(payload, list):
            return []
        notifications: List[Notification] = []
        for raw in payload:
            try:
                notifications.append(Notification.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Dropping malformed notification", error=str(exc))
        return notifications

    def read_ids(self) -> Set[str]:
        payload = read_json(self._kv, READ_IDS_KEY, {})
        if not isinstance(payload, dict):
            return set()
        return {str(key) for key, value in payload.items() if value}

    def _save_read_ids(self, ids: Set[str]) -> None:
        write_json(self._kv, READ_IDS_KEY, {notif_id: True for notif_id in sorted(ids)})

    def entries(self) -> List[Notification]:
        """Notifications with `acked` reflecting the read-id set."""
        read = self.read_ids()
        return [n.model_copy(update={"acked": n.id in read}) for n in self._load_raw()]

    def append(self, new_notifications: Iterable[Notification]) -> List[Notification]:
        new = list(new_notifications)
        if not new:
            return self.entries()
        feed = (new + self._load_raw())[: self._limit]
        write_json(self._kv, NOTIFICATIONS_KEY, [n.to_wire() for n in feed])
        return self.entries()

    def mark_read(self, notification_id: str) -> None:
        ids = self.read_ids()
        if notification_id in ids:
            return
        ids.add(notification_id)
        self._save_read_ids(ids)

    def mark_all_read(self) -> None:
        ids = self.read_ids()
        ids.update(n.id for n in self._load_raw())
        self._save_read_ids(ids)

    def unread_count(self) -> int:
        read = self.read_ids()
        return sum(1 for n in self._load_raw() if n.id not in read)
