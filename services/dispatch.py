"""Request handling for the read and write entry points.

Both entry points always answer with an envelope::

    {"success": True, "data": ..., "timestamp": "..."}
    {"success": False, "error": "...", "timestamp": "..."}

Callers branch on ``success``; failures are never signalled through the
transport status.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Callable, Dict, Mapping, Union

from .records import MalformedPayload, RecordService
from .tables import StoreError

logger = logging.getLogger(__name__)

Envelope = Dict[str, Any]


class InvalidAction(StoreError):
    """Raised when a write request names an action that does not exist."""

    def __init__(self, action: Any):
        super().__init__(f"Invalid action: {action}")
        self.action = action


def _field(data: Any, name: str) -> Any:
    if not isinstance(data, Mapping):
        raise MalformedPayload(f"Request data must be an object containing '{name}'")
    return data.get(name)


WriteHandler = Callable[[RecordService, sqlite3.Connection, Any], Any]

WRITE_ACTIONS: Dict[str, WriteHandler] = {
    "saveContact": lambda service, conn, data: service.save_contact(conn, data),
    "deleteContact": lambda service, conn, data: service.delete_contact(conn, _field(data, "id")),
    "saveActivity": lambda service, conn, data: service.save_activity(conn, data),
    "deleteActivity": lambda service, conn, data: service.delete_activity(conn, _field(data, "id")),
    "bulkUpdate": lambda service, conn, data: service.bulk_update_contacts(conn, data),
    "getSetting": lambda service, conn, data: service.get_setting(conn, _field(data, "key")),
    "setSetting": lambda service, conn, data: service.set_setting(
        conn, _field(data, "key"), _field(data, "value")
    ),
}


def success_envelope(service: RecordService, data: Any) -> Envelope:
    return {"success": True, "data": data, "timestamp": service.now_iso()}


def failure_envelope(service: RecordService, error: Union[str, BaseException]) -> Envelope:
    return {"success": False, "error": str(error), "timestamp": service.now_iso()}


def parse_request_body(body: Union[None, str, bytes, Mapping[str, Any]]) -> Mapping[str, Any]:
    """Decode a raw write request into its ``{action, data}`` mapping."""
    if isinstance(body, Mapping):
        return body
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayload("Request body is not valid UTF-8") from exc
    if body is None or not body.strip():
        raise MalformedPayload("No data provided in POST request")
    try:
        parsed = json.loads(body)
    except ValueError as exc:
        raise MalformedPayload(f"Request body is not valid JSON: {exc}") from exc
    if not isinstance(parsed, Mapping):
        raise MalformedPayload("Request body must be a JSON object")
    return parsed


def handle_read(service: RecordService, conn: sqlite3.Connection) -> Envelope:
    try:
        contacts = service.list_contacts(conn)
        activities = service.list_activities(conn)
    except StoreError as exc:
        logger.error("Error reading records: %s", exc)
        return failure_envelope(service, exc)
    except Exception as exc:
        logger.exception("Unexpected error reading records")
        return failure_envelope(service, exc)
    return success_envelope(service, {"contacts": contacts, "activities": activities})


def handle_write(
    service: RecordService,
    conn: sqlite3.Connection,
    body: Union[None, str, bytes, Mapping[str, Any]],
) -> Envelope:
    try:
        request_data = parse_request_body(body)
        action = request_data.get("action")
        handler = WRITE_ACTIONS.get(action) if isinstance(action, str) else None
        if handler is None:
            raise InvalidAction(action)
        logger.info("Handling %s request", action)
        result = handler(service, conn, request_data.get("data"))
        conn.commit()
    except StoreError as exc:
        conn.rollback()
        logger.error("Write request failed: %s", exc)
        return failure_envelope(service, exc)
    except Exception as exc:
        conn.rollback()
        logger.exception("Unexpected error handling write request")
        return failure_envelope(service, exc)
    return success_envelope(service, result)


__all__ = [
    "InvalidAction",
    "WRITE_ACTIONS",
    "failure_envelope",
    "handle_read",
    "handle_write",
    "parse_request_body",
    "success_envelope",
]
