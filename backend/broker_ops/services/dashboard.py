"""Tick orchestration for the broker operations dashboard."""
from __future__ import annotations

import asyncio
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Callable, List, Optional

from pydantic import Field

from broker_ops.core.config import Settings, get_settings
from broker_ops.core.logging import logger
from broker_ops.core.timeutil import resolve_timezone, to_iso, utc_now
from broker_ops.models.actions import ActionStatus, BrokerAction, ContactLogEntry, ContactMethod
from broker_ops.models.loads import EvaluatedLoad, Notification, StatusCounts, WireModel
from broker_ops.services.action_state import ActionStateStore
from broker_ops.services.actions import build_action_loads, derive_actions, mailto_href, maps_href, sms_href, tel_href
from broker_ops.services.attention import needs_attention, status_counts, todays_loads, upcoming_loads
from broker_ops.services.contact_log import ContactLog
from broker_ops.services.evaluator import evaluate_all_loads
from broker_ops.services.kv_store import KeyValueStore, build_kv_store
from broker_ops.services.load_provider import LoadProvider, build_load_provider
from broker_ops.services.notifications import NotificationFeed, SnapshotStore, diff_notifications


class DashboardTick(WireModel):
    """Everything derived in one evaluation pass."""

    generated_at_iso: str
    loads: List[EvaluatedLoad] = Field(default_factory=list)
    needs_attention: List[EvaluatedLoad] = Field(default_factory=list)
    today: List[EvaluatedLoad] = Field(default_factory=list)
    upcoming: List[EvaluatedLoad] = Field(default_factory=list)
    counts: StatusCounts = Field(default_factory=StatusCounts)
    new_notifications: List[Notification] = Field(default_factory=list)
    unread_notifications: int = 0
    actions: List[BrokerAction] = Field(default_factory=list)

    @property
    def open_actions(self) -> List[BrokerAction]:
        return [action for action in self.actions if action.status == ActionStatus.OPEN]


class ContactLinks(WireModel):
    """Contact affordances for one load; None means the affordance is disabled."""

    load_id: str
    call: Optional[str] = None
    text: Optional[str] = None
    map_origin: Optional[str] = None
    map_destination: Optional[str] = None
    email: Optional[str] = None


class DashboardEngine:
    """Runs evaluate -> notify -> derive -> overlay against injected loads and state."""

    def __init__(
        self,
        provider: LoadProvider,
        kv: KeyValueStore,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = settings or get_settings()
        self._provider = provider
        self._clock = clock or utc_now
        self._notify_on_code_change = settings.notify_on_code_change
        self._timezone = resolve_timezone(settings.dashboard_timezone)
        self.snapshots = SnapshotStore(kv)
        self.feed = NotificationFeed(kv, limit=settings.notification_feed_limit)
        self.action_state = ActionStateStore(kv, snooze_minutes=settings.snooze_minutes)
        self.contact_log = ContactLog(kv, limit=settings.contact_log_limit)
        self._lock = RLock()
        self._last_tick: Optional[DashboardTick] = None

    def now(self) -> datetime:
        return self._clock()

    def run_tick(self, now: Optional[datetime] = None) -> DashboardTick:
        """
        One full evaluation pass.

        The load feed is read before any persisted state is touched, so a feed
        failure leaves snapshots and action state as they were.
        """
        with self._lock:
            now = now or self._clock()
            now_iso = to_iso(now)

            loads = self._provider.fetch()
            evaluated = evaluate_all_loads(loads, now)
            attention = needs_attention(evaluated)

            diff = diff_notifications(
                self.snapshots.load(),
                evaluated,
                now_iso,
                notify_on_code_change=self._notify_on_code_change,
            )
            self.snapshots.save(diff.next_snapshots)
            self.feed.append(diff.notifications)

            derived = derive_actions(build_action_loads(attention), now_iso)
            overlay = self.action_state.overlay_action_state(derived, now_iso)

            tick = DashboardTick(
                generated_at_iso=now_iso,
                loads=evaluated,
                needs_attention=attention,
                today=todays_loads(evaluated, now, self._timezone),
                upcoming=upcoming_loads(evaluated, now),
                counts=status_counts(evaluated),
                new_notifications=diff.notifications,
                unread_notifications=self.feed.unread_count(),
                actions=overlay.actions,
            )
            self._last_tick = tick

        logger.info(
            "Dashboard tick complete",
            loads=len(evaluated),
            red=tick.counts.red,
            yellow=tick.counts.yellow,
            notifications=len(diff.notifications),
            open_actions=len(tick.open_actions),
        )
        return tick

    def latest_tick(self) -> DashboardTick:
        with self._lock:
            if self._last_tick is not None:
                return self._last_tick
        return self.run_tick()

    def find_load(self, load_id: str) -> Optional[EvaluatedLoad]:
        return next((load for load in self.latest_tick().loads if load.id == load_id), None)

    # Operator mutations write state, then re-derive immediately. Both steps hold
    # the tick lock so a concurrent tick cannot save over the write.

    def mark_action_done(self, action_id: str, now: Optional[datetime] = None) -> DashboardTick:
        now = now or self._clock()
        with self._lock:
            self.action_state.set_action_done(action_id, to_iso(now))
            return self.run_tick(now)

    def snooze_action(self, action_id: str, now: Optional[datetime] = None) -> DashboardTick:
        now = now or self._clock()
        with self._lock:
            self.action_state.snooze_action_30m(action_id, to_iso(now))
            return self.run_tick(now)

    def reopen_action(self, action_id: str, now: Optional[datetime] = None) -> DashboardTick:
        now = now or self._clock()
        with self._lock:
            self.action_state.reopen_action(action_id, to_iso(now))
            return self.run_tick(now)

    def log_contact(
        self,
        load_id: str,
        method: ContactMethod,
        action_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ContactLogEntry:
        now = now or self._clock()
        with self._lock:
            entry = self.contact_log.add_entry(action_id or f"{load_id}__DETAILS_CTA", load_id, method, to_iso(now))
            self.run_tick(now)
        return entry

    @staticmethod
    def contact_links(load: EvaluatedLoad) -> ContactLinks:
        """Call goes to the carrier line first; texts go to the driver first."""
        return ContactLinks(
            load_id=load.id,
            call=tel_href(load.carrier_phone or load.dispatch_phone or load.driver_phone),
            text=sms_href(load.driver_phone or load.dispatch_phone or load.carrier_phone),
            map_origin=maps_href(load.pickup_address or load.origin_city_state),
            map_destination=maps_href(load.delivery_address or load.dest_city_state),
            email=mailto_href(load.id, load.dispatch_email, load.driver_email),
        )


class DashboardTicker:
    """Re-runs the dashboard tick on a fixed period inside the event loop."""

    def __init__(self, engine: DashboardEngine, interval_seconds: float) -> None:
        self._engine = engine
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self._engine.run_tick)
            except Exception as exc:
                logger.error("Dashboard tick failed", error=str(exc))
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


@lru_cache()
def get_dashboard_engine() -> DashboardEngine:
    """Process-wide engine built from settings."""
    settings = get_settings()
    return DashboardEngine(build_load_provider(settings), build_kv_store(settings), settings=settings)
