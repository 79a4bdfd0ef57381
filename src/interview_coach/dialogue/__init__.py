"""
Dialogue module: the turn-taking controller between speech output and input.
"""

from interview_coach.dialogue.controller import DialogueConfig, DialogueController
from interview_coach.dialogue.errors import (
    DialogueError,
    EmptyQuestionSetError,
    InvalidQuestionSetError,
    InvalidStateError,
)
from interview_coach.dialogue.schemas import (
    SKIPPED_ANSWER,
    CompletionPayload,
    InterviewParams,
    PortState,
    SessionStatus,
    TranscriptMessage,
    TurnRecord,
    VoiceState,
)
from interview_coach.dialogue.session_state import InterviewSession
from interview_coach.dialogue.strategies import (
    SETUP_QUESTIONS,
    DialogueStrategy,
    InterviewSetupStrategy,
    PracticeInterviewStrategy,
    parse_setup_answers,
)

__all__ = [
    "DialogueController",
    "DialogueConfig",
    "DialogueError",
    "InvalidStateError",
    "EmptyQuestionSetError",
    "InvalidQuestionSetError",
    "InterviewSession",
    "SessionStatus",
    "TurnRecord",
    "TranscriptMessage",
    "PortState",
    "VoiceState",
    "CompletionPayload",
    "InterviewParams",
    "SKIPPED_ANSWER",
    "DialogueStrategy",
    "PracticeInterviewStrategy",
    "InterviewSetupStrategy",
    "SETUP_QUESTIONS",
    "parse_setup_answers",
]
