"""Contact, activity and setting persistence for the contact manager."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from dateutil.parser import isoparse

from config import StoreConfig, load_config

from .codec import format_timestamp, to_iso_timestamp, utc_now
from .tables import Record, StoreError, TableStore

logger = logging.getLogger(__name__)


class NotFound(StoreError):
    """Raised when an operation targets an identifier that is not stored."""

    def __init__(self, kind: str, identifier: Any):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class MalformedPayload(StoreError):
    """Raised when request data is missing or has the wrong shape."""


def _require_mapping(payload: Any, label: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise MalformedPayload(f"{label} must be an object")
    return payload


def _normalize_id(value: Any) -> Any:
    """Identifiers are strings; JSON numbers are stored in their text form."""
    if value in (None, ""):
        return value
    return str(value)


class RecordService:
    """Domain operations over the Contacts, Activities and Settings tables.

    Every method takes the connection to work on; committing is left to the
    caller so a whole request succeeds or fails together.
    """

    def __init__(self, config: StoreConfig, clock: Callable[[], datetime] = utc_now):
        self.config = config
        self.clock = clock

    # ------------------------------------------------------------------
    # Table access
    # ------------------------------------------------------------------
    def contacts(self, conn: sqlite3.Connection) -> TableStore:
        return TableStore(conn, self.config.contacts_table, required=True, timezone=self.config.timezone)

    def activities(self, conn: sqlite3.Connection) -> TableStore:
        return TableStore(conn, self.config.activities_table, timezone=self.config.timezone)

    def settings(self, conn: sqlite3.Connection) -> TableStore:
        return TableStore(conn, self.config.settings_table, timezone=self.config.timezone)

    def now_iso(self) -> str:
        return format_timestamp(self.clock())

    def _modified_after(self, previous: Any) -> str:
        """Current timestamp, nudged past ``previous`` so edits always move forward."""
        now = self.now_iso()
        if not isinstance(previous, str) or not previous or previous < now:
            return now
        try:
            return format_timestamp(isoparse(previous) + timedelta(milliseconds=1))
        except ValueError:
            return now

    def _added_at(self, value: Any, modified: str) -> str:
        """Creation timestamp for a new row; never later than ``modified``."""
        if value in (None, ""):
            return modified
        try:
            added = to_iso_timestamp(value, self.config.timezone)
        except ValueError:
            logger.debug("Ignoring unreadable dateAdded %r", value)
            return modified
        return added if added <= modified else modified

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------
    def list_contacts(self, conn: sqlite3.Connection) -> List[Record]:
        contacts = self.contacts(conn).list_all()
        logger.debug("Retrieved %d contacts", len(contacts))
        return contacts

    def get_contact(self, conn: sqlite3.Connection, contact_id: Any) -> Optional[Record]:
        store = self.contacts(conn)
        position = store.find_index_by_id(_normalize_id(contact_id))
        if position is None:
            return None
        return store.get_at(position)

    def save_contact(self, conn: sqlite3.Connection, payload: Any) -> Dict[str, Any]:
        contact = dict(_require_mapping(payload, "Contact data"))
        if not contact.get("id"):
            contact["id"] = str(uuid.uuid4())
            logger.debug("Generated new contact id %s", contact["id"])
        else:
            contact["id"] = _normalize_id(contact["id"])

        store = self.contacts(conn)
        position = store.find_index_by_id(contact["id"])
        existing = store.get_at(position) if position is not None else {}

        contact["lastModified"] = self._modified_after(existing.get("lastModified"))
        # dateAdded is fixed by the first save
        if existing.get("dateAdded"):
            contact["dateAdded"] = existing["dateAdded"]
        else:
            contact["dateAdded"] = self._added_at(contact.get("dateAdded"), contact["lastModified"])

        if position is not None:
            store.update(position, contact)
            action = "updated"
        else:
            store.insert(contact)
            action = "created"
        logger.info("Contact %s %s", contact["id"], action)
        return {"id": contact["id"], "action": action}

    def delete_contact(self, conn: sqlite3.Connection, contact_id: Any) -> Dict[str, Any]:
        if contact_id in (None, ""):
            raise MalformedPayload("Contact id is required")
        contact_id = _normalize_id(contact_id)
        store = self.contacts(conn)
        position = store.find_index_by_id(contact_id)
        if position is None:
            raise NotFound("Contact", contact_id)
        store.delete_at(position)
        logger.info("Contact %s deleted", contact_id)

        result: Dict[str, Any] = {"id": contact_id, "action": "deleted", "activitiesDeleted": 0}
        try:
            result["activitiesDeleted"] = self.delete_activities_for_contact(conn, contact_id)
        except Exception as exc:
            logger.warning("Failed to delete activities for contact %s: %s", contact_id, exc)
            result["warnings"] = [f"Activities for contact {contact_id} could not be deleted: {exc}"]
        return result

    def bulk_update_contacts(self, conn: sqlite3.Connection, payload: Any) -> List[Dict[str, Any]]:
        payload = _require_mapping(payload, "Bulk update data")
        contact_ids = payload.get("contactIds")
        updates = payload.get("updates") or {}
        if not isinstance(contact_ids, (list, tuple)):
            raise MalformedPayload("contactIds must be a list")
        updates = _require_mapping(updates, "updates")

        results: List[Dict[str, Any]] = []
        for contact_id in map(_normalize_id, contact_ids):
            try:
                existing = self.get_contact(conn, contact_id)
                if existing is None:
                    results.append({"id": contact_id, "success": False, "error": "Contact not found"})
                    continue
                merged = {**existing, **updates, "id": contact_id}
                results.append({"id": contact_id, "success": True, "result": self.save_contact(conn, merged)})
            except Exception as exc:
                logger.exception("Bulk update failed for contact %s", contact_id)
                results.append({"id": contact_id, "success": False, "error": str(exc)})
        logger.info("Bulk update completed: %d contacts processed", len(results))
        return results

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def list_activities(self, conn: sqlite3.Connection) -> List[Record]:
        return self.activities(conn).list_all()

    def save_activity(self, conn: sqlite3.Connection, payload: Any) -> Dict[str, Any]:
        activity = dict(_require_mapping(payload, "Activity data"))
        contact_id = activity.get("contactId")
        if contact_id in (None, ""):
            raise MalformedPayload("Activity contactId is required")
        contact_id = activity["contactId"] = _normalize_id(contact_id)
        if self.contacts(conn).find_index_by_id(contact_id) is None:
            raise NotFound("Contact", contact_id)

        if not activity.get("id"):
            activity["id"] = str(uuid.uuid4())
        else:
            activity["id"] = _normalize_id(activity["id"])
        if not activity.get("date"):
            activity["date"] = self.now_iso()

        store = self.activities(conn)
        position = store.find_index_by_id(activity["id"])
        if position is not None:
            store.update(position, activity)
            action = "updated"
        else:
            store.insert(activity)
            action = "created"
        logger.info("Activity %s %s", activity["id"], action)
        return {"id": activity["id"], "action": action}

    def delete_activity(self, conn: sqlite3.Connection, activity_id: Any) -> Dict[str, Any]:
        if activity_id in (None, ""):
            raise MalformedPayload("Activity id is required")
        activity_id = _normalize_id(activity_id)
        store = self.activities(conn)
        position = store.find_index_by_id(activity_id)
        if position is None:
            raise NotFound("Activity", activity_id)
        store.delete_at(position)
        logger.info("Activity %s deleted", activity_id)
        return {"id": activity_id, "action": "deleted"}

    def delete_activities_for_contact(self, conn: sqlite3.Connection, contact_id: Any) -> int:
        store = self.activities(conn)
        if not store.exists():
            return 0
        if "contactId" not in store.headers():
            logger.info("contactId column not found in %s", store.table_name)
            return 0
        contact_id = _normalize_id(contact_id)
        removed = store.delete_where(lambda activity: _normalize_id(activity.get("contactId")) == contact_id)
        if removed:
            logger.info("Deleted %d activities for contact %s", removed, contact_id)
        return removed

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_setting(self, conn: sqlite3.Connection, key: Any) -> Optional[Dict[str, Any]]:
        store = self.settings(conn)
        if not store.exists():
            logger.info("%s table not found", store.table_name)
            return None
        position = store.find_index_by_id(key, id_field="key")
        if position is None:
            return None
        return {"key": key, "value": store.get_at(position).get("value")}

    def set_setting(self, conn: sqlite3.Connection, key: Any, value: Any) -> Dict[str, Any]:
        if key in (None, ""):
            raise MalformedPayload("Setting key is required")
        if isinstance(value, (dict, list)):
            raise MalformedPayload("Setting value must be a single value")
        store = self.settings(conn)
        position = store.find_index_by_id(key, id_field="key")
        if position is not None:
            store.update_cell(position, "value", value)
            action = "updated"
        else:
            store.insert({"key": key, "value": value, "description": ""})
            action = "created"
        logger.info("Setting %s %s", key, action)
        return {"key": key, "value": value, "action": action}

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def check_setup(self, conn: sqlite3.Connection) -> Dict[str, Dict[str, Any]]:
        """Report whether each table exists and how many rows it holds."""
        report: Dict[str, Dict[str, Any]] = {}
        for store in (self.contacts(conn), self.activities(conn), self.settings(conn)):
            exists = store.exists()
            report[store.table_name] = {
                "exists": exists,
                "required": store.required,
                "rows": store.count() if exists else 0,
            }
        return report


# ----------------------------------------------------------------------
# Module level singleton used by the Flask app
# ----------------------------------------------------------------------

_service: Optional[RecordService] = None


def get_record_service() -> RecordService:
    global _service
    if _service is None:
        _service = RecordService(load_config())
    return _service


def bootstrap_record_service(config: StoreConfig) -> RecordService:
    global _service
    _service = RecordService(config)
    return _service


def reset_record_service() -> None:
    """Drop the cached service so the next call rebuilds it from configuration."""
    global _service
    _service = None


__all__ = [
    "MalformedPayload",
    "NotFound",
    "RecordService",
    "bootstrap_record_service",
    "get_record_service",
    "reset_record_service",
]
