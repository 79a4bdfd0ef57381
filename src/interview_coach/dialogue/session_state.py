"""
Interview session state.

Tracks the question set, progress pointer, transcript log and status of one
practice run. Only the dialogue controller mutates a session.
"""

from collections.abc import Sequence

from interview_coach.dialogue.schemas import (
    ACTIVE_STATES,
    SKIPPED_ANSWER,
    SessionStatus,
    TranscriptMessage,
    TurnRecord,
)


class InterviewSession:
    """
    Mutable state of one interview session.

    The question set is fixed at construction. `current_index` only moves
    forward, one step per closed turn, so the transcript log always holds one
    record per asked question, in order.
    """

    def __init__(self, questions: Sequence[str]) -> None:
        """
        Initialize session state.

        Args:
            questions: Prompts to ask, in order.
        """
        self._questions: tuple[str, ...] = tuple(questions)
        self._current_index: int = 0
        self._transcript_log: list[TurnRecord] = []
        self._messages: list[TranscriptMessage] = []
        self._status: SessionStatus = SessionStatus.IDLE
        self._pending_transcript: str = ""
        self._pending_simulated: bool = False

    @property
    def questions(self) -> tuple[str, ...]:
        """Get the fixed question set."""
        return self._questions

    @property
    def current_index(self) -> int:
        """Get the zero-based index of the current question."""
        return self._current_index

    @property
    def current_question(self) -> str | None:
        """Get the question of the open turn, or None when exhausted."""
        if self.is_exhausted:
            return None
        return self._questions[self._current_index]

    @property
    def is_exhausted(self) -> bool:
        return self._current_index >= len(self._questions)

    @property
    def transcript_log(self) -> list[TurnRecord]:
        """Get all closed turns."""
        return self._transcript_log.copy()

    @property
    def messages(self) -> list[TranscriptMessage]:
        """Get the chat-style transcript."""
        return self._messages.copy()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._status in ACTIVE_STATES

    @property
    def pending_transcript(self) -> str:
        """Get the latest transcript not yet committed to a turn."""
        return self._pending_transcript

    @property
    def answers_given(self) -> int:
        """Count of turns answered rather than skipped."""
        return sum(1 for turn in self._transcript_log if not turn.skipped)

    def set_status(self, status: SessionStatus) -> None:
        self._status = status

    def set_pending_transcript(self, text: str, *, simulated: bool = False) -> None:
        self._pending_transcript = text
        self._pending_simulated = simulated

    def clear_pending_transcript(self) -> None:
        self._pending_transcript = ""
        self._pending_simulated = False

    def add_message(self, role: str, content: str) -> TranscriptMessage:
        message = TranscriptMessage(role=role, content=content)
        self._messages.append(message)
        return message

    def close_turn(self, *, skipped: bool = False) -> TurnRecord:
        """
        Commit the open turn and advance to the next question.

        Args:
            skipped: Record SKIPPED_ANSWER instead of the pending transcript.

        Returns:
            The appended turn record.

        Raises:
            IndexError: If every question has already been answered.
        """
        if self.is_exhausted:
            raise IndexError("No open turn: all questions have been answered")

        record = TurnRecord(
            question_index=self._current_index,
            question_text=self._questions[self._current_index],
            answer_text=SKIPPED_ANSWER if skipped else self._pending_transcript,
            simulated=False if skipped else self._pending_simulated,
        )
        self._transcript_log.append(record)
        self._current_index += 1
        self.clear_pending_transcript()
        return record
