"""
SQLAlchemy models for database persistence.

Every record lives in one `records` table, keyed by collection and id, with
its fields stored as a JSON document.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class RecordModel(Base):
    """Database model for a document in a collection."""

    __tablename__ = "records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    collection: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_now_utc,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<RecordModel {self.collection}/{self.id}>"
