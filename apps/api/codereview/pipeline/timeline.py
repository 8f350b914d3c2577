"""Lifecycle events for the project timeline."""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from codereview.database.store import RecordStore
from codereview.schemas import TimelineEvent, TimelineEventType


logger = logging.getLogger(__name__)


class TimelineService:
    """Records timeline events; a failed write never reaches the caller."""

    def __init__(self, store: RecordStore[TimelineEvent]):
        self.store = store

    async def add_event(
        self,
        event_type: TimelineEventType,
        project_id: str | None = None,
        submission_id: str | None = None,
        run_id: str | None = None,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> TimelineEvent | None:
        event = TimelineEvent(
            id=str(uuid4()),
            type=event_type,
            project_id=project_id,
            submission_id=submission_id,
            run_id=run_id,
            message=message,
            details=details,
        )
        try:
            await self.store.save(event)
        except Exception as e:
            logger.warning(f"Failed to record timeline event {event_type.value}: {e}")
            return None
        return event

    async def events(
        self,
        project_id: str | None = None,
        submission_id: str | None = None,
        run_id: str | None = None,
    ) -> list[TimelineEvent]:
        """Events matching every given filter, newest first."""
        items = await self.store.list()
        if project_id is not None:
            items = [e for e in items if e.project_id == project_id]
        if submission_id is not None:
            items = [e for e in items if e.submission_id == submission_id]
        if run_id is not None:
            items = [e for e in items if e.run_id == run_id]
        return sorted(items, key=lambda e: e.created_at, reverse=True)
