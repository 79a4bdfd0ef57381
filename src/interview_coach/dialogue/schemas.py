"""
Pydantic schemas for the dialogue module.

Defines session status, turn records and the payloads delivered to
subscribers of the dialogue controller.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from interview_coach.voice.errors import ErrorKind


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


# Recorded as the answer of a skipped turn.
SKIPPED_ANSWER = "[Skipped]"

DialogueMode = Literal["practice", "setup"]


class SessionStatus(str, Enum):
    """Lifecycle states of an interview session."""

    IDLE = "idle"
    AWAITING_SPEECH = "awaiting_speech"
    LISTENING = "listening"
    PROCESSING = "processing"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


ACTIVE_STATES = frozenset(
    {SessionStatus.AWAITING_SPEECH, SessionStatus.LISTENING, SessionStatus.PROCESSING}
)


class TurnRecord(BaseModel):
    """One question/answer pair."""

    question_index: int = Field(..., ge=0, description="Position of the question in the session")
    question_text: str = Field(..., description="The exact prompt spoken")
    answer_text: str = Field(..., description="Submitted transcript, or SKIPPED_ANSWER")
    timestamp: datetime = Field(default_factory=_now_utc, description="When the turn was closed")
    simulated: bool = Field(default=False, description="Answer came from degraded-mode input")

    @property
    def skipped(self) -> bool:
        return self.answer_text == SKIPPED_ANSWER


class TranscriptMessage(BaseModel):
    """Chat-style line of the running interview transcript."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_now_utc)


class PortState(BaseModel):
    """Controller-owned view of one speech port."""

    active: bool = False
    last_error: ErrorKind | None = None


class VoiceState(BaseModel):
    """Snapshot delivered on every state change."""

    status: SessionStatus = SessionStatus.IDLE
    is_listening: bool = False
    is_speaking: bool = False
    is_processing: bool = False
    transcript: str = Field(default="", description="Pending (unsubmitted) transcript")
    error: str | None = None


class InterviewParams(BaseModel):
    """Interview parameters collected by the setup dialogue."""

    role: str = Field(default="Software Engineer", description="Role being interviewed for")
    level: str = Field(default="Mid-level", description="Junior, Mid-level or Senior")
    techstack: list[str] = Field(default_factory=list, description="Technologies to cover")
    type: Literal["technical", "behavioral", "mixed"] = Field(default="technical")
    amount: int = Field(default=5, ge=1, le=15, description="Number of questions to generate")
    user_id: str | None = None


class CompletionPayload(BaseModel):
    """Delivered exactly once when a session completes."""

    interview_id: str | None = None
    user_id: str | None = None
    mode: DialogueMode = "practice"
    questions_asked: int = Field(..., ge=0)
    answers_given: int = Field(..., ge=0, description="Turns that were not skipped")
    transcript: list[TurnRecord] = Field(default_factory=list)
    messages: list[TranscriptMessage] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_now_utc)
    interview_params: InterviewParams | None = None
