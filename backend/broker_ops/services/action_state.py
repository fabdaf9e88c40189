"""
Persisted lifecycle state (OPEN/DONE/SNOOZED) for derived actions.

Actions are re-derived every tick; their lifecycle state lives here keyed
by the stable action id. Each overlay reads the full map, prunes ids that
no longer apply, and writes the full map back.
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, List

from pydantic import ValidationError

from broker_ops.core.logging import logger
from broker_ops.core.timeutil import add_minutes, parse_iso_datetime, parse_iso_ms, to_iso
from broker_ops.models.actions import ActionOverlay, ActionStateEntry, ActionStatus, BrokerAction
from broker_ops.services.kv_store import KeyValueStore, read_json, write_json

ACTION_STATE_KEY = "brokerSoftware.actionState.v1"


def snooze_expired(entry: ActionStateEntry, now_iso: str) -> bool:
    if entry.status != ActionStatus.SNOOZED or not entry.snooze_until_iso:
        return False
    until_ms = parse_iso_ms(entry.snooze_until_iso)
    now_ms = parse_iso_ms(now_iso)
    if math.isinf(until_ms) or math.isinf(now_ms):
        return False
    return now_ms >= until_ms


class ActionStateStore:
    """Reads and writes the ActionStateMap through the injected key-value store."""

    def __init__(self, kv: KeyValueStore, snooze_minutes: int = 30) -> None:
        self._kv = kv
        self._snooze_minutes = snooze_minutes

    def load_state(self) -> Dict[str, ActionStateEntry]:
        payload = read_json(self._kv, ACTION_STATE_KEY, {})
        if not isinstance(payload, dict):
            return {}
        state: Dict[str, ActionStateEntry] = {}
        for action_id, raw in payload.items():
            try:
                state[str(action_id)] = ActionStateEntry.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Dropping malformed action state", action_id=action_id, error=str(exc))
        return state

    def save_state(self, state: Dict[str, ActionStateEntry]) -> None:
        write_json(self._kv, ACTION_STATE_KEY, {action_id: entry.to_wire() for action_id, entry in state.items()})

    def overlay_action_state(self, derived: Iterable[BrokerAction], now_iso: str) -> ActionOverlay:
        derived = list(derived)
        state = self.load_state()

        derived_ids = {action.id for action in derived}
        pruned = {action_id: entry for action_id, entry in state.items() if action_id in derived_ids}

        actions: List[BrokerAction] = []
        for action in derived:
            entry = pruned.get(action.id)
            if entry is None:
                actions.append(action)
                continue
            if snooze_expired(entry, now_iso):
                entry = ActionStateEntry(status=ActionStatus.OPEN, updated_at_iso=now_iso)
                pruned[action.id] = entry
                logger.info("Snoozed action reopened", action_id=action.id)
            actions.append(action.model_copy(update={"status": entry.status}))

        self.save_state(pruned)
        return ActionOverlay(actions=actions, state=pruned)

    def _put(self, action_id: str, entry: ActionStateEntry) -> ActionStateEntry:
        state = self.load_state()
        state[action_id] = entry
        self.save_state(state)
        logger.info("Action state updated", action_id=action_id, status=entry.status.value)
        return entry

    def set_action_done(self, action_id: str, now_iso: str) -> ActionStateEntry:
        return self._put(action_id, ActionStateEntry(status=ActionStatus.DONE, updated_at_iso=now_iso))

    def snooze_action_30m(self, action_id: str, now_iso: str) -> ActionStateEntry:
        """Snooze until now + snooze_minutes (instant arithmetic, not wall-clock)."""
        now = parse_iso_datetime(now_iso)
        if now is None:
            raise ValueError(f"Invalid timestamp: {now_iso!r}")
        until = to_iso(add_minutes(now, self._snooze_minutes))
        return self._put(
            action_id,
            ActionStateEntry(status=ActionStatus.SNOOZED, snooze_until_iso=until, updated_at_iso=now_iso),
        )

    def reopen_action(self, action_id: str, now_iso: str) -> ActionStateEntry:
        return self._put(action_id, ActionStateEntry(status=ActionStatus.OPEN, updated_at_iso=now_iso))
