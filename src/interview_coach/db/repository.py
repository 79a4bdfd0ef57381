"""
Repository pattern over the record store.

Maps interview and feedback records to their pydantic models and implements
the lookups the application needs.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from interview_coach.db.store import RecordStore
from interview_coach.interview.schemas import Feedback, Interview, StoredRecord

T = TypeVar("T", bound=StoredRecord)


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common CRUD operations."""

    def __init__(self, store: RecordStore) -> None:
        """
        Initialize the repository.

        Args:
            store: Record store backing this repository.
        """
        self._store = store

    @property
    @abstractmethod
    def _collection(self) -> str:
        """Get the collection name for this repository."""
        ...

    @property
    @abstractmethod
    def _model_class(self) -> type[T]:
        """Get the model class for this repository."""
        ...

    async def get_by_id(self, entity_id: str) -> T | None:
        """
        Get an entity by its ID.

        Args:
            entity_id: The record id.

        Returns:
            The entity if found, None otherwise.
        """
        data = await self._store.get_record(self._collection, entity_id)
        return self._model_class.model_validate(data) if data is not None else None

    async def create(self, entity: T) -> T:
        """
        Create a new entity.

        Args:
            entity: The entity to create.

        Returns:
            A copy of the entity carrying its new id.
        """
        record_id = await self._store.create_record(self._collection, entity.to_record())
        return entity.model_copy(update={"id": record_id})

    async def _query(self, **field_equals) -> list[T]:
        records = await self._store.query_records(self._collection, **field_equals)
        return [self._model_class.model_validate(r) for r in records]


class InterviewRepository(BaseRepository[Interview]):
    """Repository for generated interviews."""

    @property
    def _collection(self) -> str:
        return "interviews"

    @property
    def _model_class(self) -> type[Interview]:
        return Interview

    async def list_by_user(self, user_id: str) -> list[Interview]:
        """
        Get a user's interviews, newest first.

        Args:
            user_id: Owner identifier.
        """
        interviews = await self._query(userId=user_id)
        return sorted(interviews, key=lambda i: i.created_at, reverse=True)

    async def list_latest(self, *, exclude_user_id: str | None, limit: int = 20) -> list[Interview]:
        """
        Get the newest finalized interviews created by other users.

        Args:
            exclude_user_id: The current user, whose interviews are left out.
            limit: Maximum number of interviews returned.
        """
        interviews = await self._query(finalized=True)
        others = [i for i in interviews if exclude_user_id is None or i.user_id != exclude_user_id]
        others.sort(key=lambda i: i.created_at, reverse=True)
        return others[:limit]


class FeedbackRepository(BaseRepository[Feedback]):
    """Repository for interview feedback."""

    @property
    def _collection(self) -> str:
        return "feedback"

    @property
    def _model_class(self) -> type[Feedback]:
        return Feedback

    async def get_by_interview(self, interview_id: str, user_id: str) -> Feedback | None:
        """
        Get the latest feedback a user received for an interview.

        Args:
            interview_id: Interview record id.
            user_id: Owner identifier.
        """
        matches = await self._query(interviewId=interview_id, userId=user_id)
        if not matches:
            return None
        return max(matches, key=lambda f: f.created_at)
