"""API routes for the broker operations dashboard."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from broker_ops.core.logging import logger
from broker_ops.models.actions import ActionStatus, BrokerAction, ContactLogEntry, ContactMethod
from broker_ops.models.loads import EvaluatedLoad, Notification, WireModel
from broker_ops.services.attention import matches_search
from broker_ops.services.contact_log import method_from_href
from broker_ops.services.dashboard import ContactLinks, DashboardEngine, DashboardTick, get_dashboard_engine
from broker_ops.services.load_provider import LoadProviderError

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class ContactLogRequest(WireModel):
    """Record an outreach attempt; `href` is used to infer the method when `method` is omitted."""

    load_id: str
    action_id: Optional[str] = None
    method: Optional[ContactMethod] = None
    href: Optional[str] = None


class LoadContactsResponse(BaseModel):
    links: ContactLinks
    entries: List[ContactLogEntry]


def _tick_or_502(call):
    try:
        return call()
    except LoadProviderError as exc:
        logger.error("Load feed unavailable", error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc))


@router.get("/tick", response_model=DashboardTick)
def get_latest_tick(engine: DashboardEngine = Depends(get_dashboard_engine)):
    """Most recent tick; runs one only if none has happened yet."""
    return _tick_or_502(engine.latest_tick)


@router.post("/tick", response_model=DashboardTick)
def run_tick(engine: DashboardEngine = Depends(get_dashboard_engine)):
    """Evaluate now. Persists snapshots, notifications and pruned action state."""
    return _tick_or_502(engine.run_tick)


@router.get("/attention", response_model=List[EvaluatedLoad])
def get_needs_attention(
    q: str = Query(default=""),
    engine: DashboardEngine = Depends(get_dashboard_engine),
):
    tick = _tick_or_502(engine.latest_tick)
    return [load for load in tick.needs_attention if matches_search(load, q)]


@router.get("/actions", response_model=List[BrokerAction])
def get_actions(
    status: str = Query(default="OPEN", description="OPEN|DONE|SNOOZED|ALL"),
    engine: DashboardEngine = Depends(get_dashboard_engine),
):
    wanted = status.strip().upper()
    if wanted != "ALL" and wanted not in {s.value for s in ActionStatus}:
        raise HTTPException(status_code=400, detail=f"Unsupported action status '{status}'")
    tick = _tick_or_502(engine.latest_tick)
    if wanted == "ALL":
        return tick.actions
    return [action for action in tick.actions if action.status.value == wanted]


@router.post("/actions/{action_id}/done", response_model=List[BrokerAction])
def mark_action_done(action_id: str, engine: DashboardEngine = Depends(get_dashboard_engine)):
    return _tick_or_502(lambda: engine.mark_action_done(action_id)).actions


@router.post("/actions/{action_id}/snooze", response_model=List[BrokerAction])
def snooze_action(action_id: str, engine: DashboardEngine = Depends(get_dashboard_engine)):
    return _tick_or_502(lambda: engine.snooze_action(action_id)).actions


@router.post("/actions/{action_id}/reopen", response_model=List[BrokerAction])
def reopen_action(action_id: str, engine: DashboardEngine = Depends(get_dashboard_engine)):
    return _tick_or_502(lambda: engine.reopen_action(action_id)).actions


@router.get("/notifications")
def get_notifications(engine: DashboardEngine = Depends(get_dashboard_engine)):
    items: List[Notification] = engine.feed.entries()
    return {
        "items": [item.to_wire() for item in items],
        "unread": sum(1 for item in items if not item.acked),
    }


@router.post("/notifications/read-all")
def mark_all_notifications_read(engine: DashboardEngine = Depends(get_dashboard_engine)):
    engine.feed.mark_all_read()
    return {"unread": engine.feed.unread_count()}


@router.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, engine: DashboardEngine = Depends(get_dashboard_engine)):
    engine.feed.mark_read(notification_id)
    return {"unread": engine.feed.unread_count()}


@router.post("/contacts", response_model=ContactLogEntry)
def log_contact(request: ContactLogRequest, engine: DashboardEngine = Depends(get_dashboard_engine)):
    method = request.method or (method_from_href(request.href) if request.href else None)
    if method is None:
        raise HTTPException(status_code=400, detail="Contact method is required (method or a tel:/sms:/mailto:/maps href).")
    return _tick_or_502(lambda: engine.log_contact(request.load_id, method, action_id=request.action_id))


@router.get("/loads/{load_id}/contacts", response_model=LoadContactsResponse)
def get_load_contacts(load_id: str, engine: DashboardEngine = Depends(get_dashboard_engine)):
    load = _tick_or_502(lambda: engine.find_load(load_id))
    if load is None:
        raise HTTPException(status_code=404, detail="Load not found")
    return LoadContactsResponse(
        links=engine.contact_links(load),
        entries=engine.contact_log.contact_log_for_load(load_id),
    )
