"""Events recorded against provider revisions."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

from .models import ProviderRevision

logger = logging.getLogger(__name__)

EventRecord = dict[str, Any]

TYPE_NORMAL = "Normal"
TYPE_WARNING = "Warning"

REASON_APPLY_ROLES = "ApplyClusterRoles"


def utc_rfc3339_now() -> str:
    return datetime.now(tz=UTC).isoformat()


def new_event_record(
    *,
    revision: ProviderRevision,
    event_type: str,
    reason: str,
    message: str,
    event_id: str | None = None,
    timestamp: str | None = None,
) -> EventRecord:
    return {
        "event_id": event_id or uuid4().hex,
        "timestamp": timestamp or utc_rfc3339_now(),
        "type": event_type,
        "reason": reason,
        "message": message,
        "involvedObject": {
            "kind": "ProviderRevision",
            "name": revision.metadata.name,
            "uid": revision.metadata.uid,
        },
    }


class EventRecorder(Protocol):
    def event(self, revision: ProviderRevision, event_type: str, reason: str, message: str) -> None: ...


class NopEventRecorder:
    def event(self, revision: ProviderRevision, event_type: str, reason: str, message: str) -> None:
        return None


class LoggingEventRecorder:
    """Write each event as one JSON line to the ``provider_rbac.events`` logger."""

    def event(self, revision: ProviderRevision, event_type: str, reason: str, message: str) -> None:
        record = new_event_record(
            revision=revision,
            event_type=event_type,
            reason=reason,
            message=message,
        )
        level = logging.WARNING if event_type == TYPE_WARNING else logging.INFO
        logger.log(level, json.dumps(record, sort_keys=True))


__all__ = [
    "EventRecord",
    "EventRecorder",
    "LoggingEventRecorder",
    "NopEventRecorder",
    "REASON_APPLY_ROLES",
    "TYPE_NORMAL",
    "TYPE_WARNING",
    "new_event_record",
]
