"""Append-only contact log: who was contacted for which load, how, and when."""
from __future__ import annotations

from typing import List, Optional

from pydantic import ValidationError

from broker_ops.core.logging import logger
from broker_ops.models.actions import ContactLogEntry, ContactMethod
from broker_ops.services.kv_store import KeyValueStore, read_json, write_json

CONTACT_LOG_KEY = "brokerSoftware.contactLog.v1"


def method_from_href(href: str) -> Optional[ContactMethod]:
    """Infer the contact method from a tel:/sms:/mailto:/maps link."""
    link = (href or "").strip().lower()
    if link.startswith("tel:"):
        return ContactMethod.CALL
    if link.startswith("sms:"):
        return ContactMethod.TEXT
    if link.startswith("mailto:"):
        return ContactMethod.EMAIL
    if "maps" in link or link.startswith("geo:"):
        return ContactMethod.MAP
    return None


class ContactLog:
    """Newest-first log capped at `limit` entries; lookups are linear scans."""

    def __init__(self, kv: KeyValueStore, limit: int = 200) -> None:
        self._kv = kv
        self._limit = limit

    def entries(self) -> List[ContactLogEntry]:
        payload = read_json(self._kv, CONTACT_LOG_KEY, [])
        if not isinstance(payload, list):
            return []
        entries: List[ContactLogEntry] = []
        for raw in payload:
            try:
                entries.append(ContactLogEntry.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Dropping malformed contact log entry", error=str(exc))
        return entries

    def add_entry(self, action_id: str, load_id: str, method: ContactMethod, at_iso: str) -> ContactLogEntry:
        entry = ContactLogEntry(
            id=f"{action_id}__{at_iso}",
            action_id=action_id,
            load_id=load_id,
            method=method,
            at_iso=at_iso,
        )
        log = [entry, *self.entries()][: self._limit]
        write_json(self._kv, CONTACT_LOG_KEY, [row.to_wire() for row in log])
        logger.info("Contact logged", load_id=load_id, action_id=action_id, method=method.value)
        return entry

    def last_contact_for_action(self, action_id: str) -> Optional[ContactLogEntry]:
        return next((row for row in self.entries() if row.action_id == action_id), None)

    def last_contact_for_load(self, load_id: str) -> Optional[ContactLogEntry]:
        return next((row for row in self.entries() if row.load_id == load_id), None)

    def contact_log_for_load(self, load_id: str) -> List[ContactLogEntry]:
        return [row for row in self.entries() if row.load_id == load_id]
