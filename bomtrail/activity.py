"""
Activity/audit collaborator.

An append-only sink for change-application records. Writes are best-effort:
``record_activity`` logs failures and reports them as False instead of
raising, so an audit outage never undoes the change it describes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from .models import to_iso, utc_now
from .store.base import ACTIVITIES, ItemStore

logger = logging.getLogger(__name__)

RUNNING_CHANGE_APPLIED = "running_change_applied"


@dataclass
class ActivityEntry:
    project_id: str
    type: str
    description: str
    user_id: str
    user_name: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type,
            "description": self.description,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "details": dict(self.details),
            "timestamp": to_iso(self.timestamp),
        }


class ActivityLog:
    """Append-only audit sink."""

    def append(self, entry: ActivityEntry) -> None:
        raise NotImplementedError


class StoreActivityLog(ActivityLog):
    """Writes entries to the project's ``activities`` collection."""

    def __init__(self, store: ItemStore):
        self.store = store

    def append(self, entry: ActivityEntry) -> None:
        self.store.set(entry.project_id, ACTIVITIES, entry.id, entry.to_dict())


def record_activity(log: Optional[ActivityLog], entry: ActivityEntry) -> bool:
    """
    Append an entry, swallowing sink failures.

    Returns:
        True if the entry was written
    """
    if log is None:
        return False
    try:
        log.append(entry)
        return True
    except Exception as e:
        logger.error(f"Failed to record {entry.type} activity for project {entry.project_id}: {e}", exc_info=True)
        return False
