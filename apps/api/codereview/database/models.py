"""SQLModel table backing the record store.

Tables:
- Record: one JSON document per (collection, id); submissions, reports and
  timeline events all live here and are replaced whole on update.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Record(SQLModel, table=True):
    """A stored document."""

    __tablename__ = "records"
    __table_args__ = (
        Index("ix_records_collection_created", "collection", "created_at"),
    )

    collection: str = Field(primary_key=True, description="Collection name, e.g. submissions")
    id: str = Field(primary_key=True, description="Record id within the collection")
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime | None = Field(default=None)
