"""
Database module for persistence.

Provides the record store (in-memory or SQLAlchemy) and repositories for
interview and feedback records.
"""

from interview_coach.db.models import Base, RecordModel
from interview_coach.db.repository import FeedbackRepository, InterviewRepository
from interview_coach.db.store import (
    IN_MEMORY_URL,
    InMemoryRecordStore,
    RecordStore,
    SqlRecordStore,
    create_record_store,
)

__all__ = [
    "Base",
    "RecordModel",
    "RecordStore",
    "InMemoryRecordStore",
    "SqlRecordStore",
    "IN_MEMORY_URL",
    "create_record_store",
    "InterviewRepository",
    "FeedbackRepository",
]
