"""
Pydantic schemas for interviews and feedback.

Stored records use camelCase field names (`userId`, `createdAt`, ...); models
accept either spelling on input.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


FEEDBACK_CATEGORIES: tuple[str, ...] = (
    "Communication Skills",
    "Technical Knowledge",
    "Problem Solving",
    "Cultural Fit",
    "Confidence and Clarity",
)


class StoredRecord(BaseModel):
    """Base for documents kept in the record store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str | None = Field(default=None, description="Record id assigned by the store")

    def to_record(self) -> dict:
        """Serialize for storage (camelCase keys, no id)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})


class Interview(StoredRecord):
    """A generated practice interview."""

    role: str = Field(..., description="Role being interviewed for")
    type: str = Field(default="technical", description="technical, behavioral or mixed")
    level: str = Field(default="Mid-level", description="Experience level")
    techstack: list[str] = Field(default_factory=list, description="Technologies covered")
    questions: list[str] = Field(default_factory=list, description="Questions in speaking order")
    user_id: str | None = Field(default=None, description="Owner of the interview")
    finalized: bool = Field(default=True, description="Ready to practice")
    question_count: int = Field(default=0, ge=0)
    source: Literal["llm", "fallback"] = Field(default="llm", description="Where the questions came from")
    created_at: datetime = Field(default_factory=_now_utc)


class CategoryScore(BaseModel):
    """Score for one feedback category."""

    name: str
    score: int = Field(..., ge=0, le=100)
    comment: str


class Feedback(StoredRecord):
    """Scored feedback for one completed interview."""

    interview_id: str
    user_id: str | None = None
    total_score: int = Field(..., ge=0, le=100)
    category_scores: list[CategoryScore] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    areas_for_improvement: list[str] = Field(default_factory=list)
    final_assessment: str = ""
    created_at: datetime = Field(default_factory=_now_utc)
    model: str = Field(default="", description="Model that produced the scores")
    status: str = "completed"
    version: str = "1.0"


class GeneratedInterview(BaseModel):
    """Outcome of question generation."""

    questions: list[str]
    source: Literal["llm", "fallback"]
    interview: Interview | None = Field(default=None, description="Persisted record, if saved")
    error: str | None = None

    @property
    def interview_id(self) -> str | None:
        return self.interview.id if self.interview else None


class FeedbackResult(BaseModel):
    """Outcome of feedback creation."""

    success: bool
    feedback_id: str | None = None
    feedback: Feedback | None = None
    error: str | None = None
