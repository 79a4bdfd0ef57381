"""
Dialogue strategies.

The controller runs the same turn-taking loop for every kind of dialogue; a
strategy supplies what is said and what the finished session means. A
strategy is chosen once when the controller is constructed.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Sequence

from interview_coach.dialogue.schemas import DialogueMode, InterviewParams, TurnRecord

SETUP_QUESTIONS: tuple[str, ...] = (
    "What type of interview would you like? Technical or behavioral?",
    "What role are you interviewing for?",
    "What experience level? Junior, Mid-level, or Senior?",
    "What technologies or tech stack?",
    "How many questions would you like? 3, 5, or 10?",
)

_NUMBER_WORDS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "fifteen": 15,
}

_ROLE_LEAD_IN_RE = re.compile(
    r"^(?:i(?:'m| am)\s+(?:interviewing|applying)\s+for\s+|for\s+|a\s+|an\s+|the\s+)+",
    re.IGNORECASE,
)
_ROLE_SUFFIX_RE = re.compile(r"\s+(?:role|position|job)$", re.IGNORECASE)
_STACK_SPLIT_RE = re.compile(r",|\band\b|&", re.IGNORECASE)


class DialogueStrategy(ABC):
    """What the controller says, and how a finished session is packaged."""

    mode: DialogueMode

    def default_questions(self) -> tuple[str, ...]:
        """Questions used when `start()` is given none."""
        return ()

    @abstractmethod
    def introduction(self, total_questions: int) -> str:
        ...

    @abstractmethod
    def question_message(self, index: int, question: str) -> str:
        """Transcript line recorded for a question."""
        ...

    def spoken_question(self, index: int, question: str) -> str:
        return question

    def listening_prompt(self) -> str | None:
        """Spoken after the question, before listening starts."""
        return None

    @abstractmethod
    def acknowledgement(self, skipped: bool) -> str:
        ...

    def skip_message(self, index: int) -> str:
        return f"[Skipped question {index + 1}]"

    @abstractmethod
    def closing(self) -> str:
        ...

    def interview_params(
        self, transcript: Sequence[TurnRecord], user_id: str | None
    ) -> InterviewParams | None:
        """Parameters derived from the finished session, if any."""
        return None


class PracticeInterviewStrategy(DialogueStrategy):
    """Mock interview over a caller-supplied question set."""

    mode: DialogueMode = "practice"

    def __init__(self, submit_hint: str = "When ready, press Enter to submit your answer.") -> None:
        self._submit_hint = submit_hint

    def introduction(self, total_questions: int) -> str:
        return "Interview starting. I will ask questions and wait for your answers."

    def question_message(self, index: int, question: str) -> str:
        return f"Question {index + 1}: {question}"

    def spoken_question(self, index: int, question: str) -> str:
        return f"Question {index + 1}. {question}"

    def listening_prompt(self) -> str | None:
        return self._submit_hint or None

    def acknowledgement(self, skipped: bool) -> str:
        return "Question skipped." if skipped else "Thank you for your answer."

    def closing(self) -> str:
        return "Interview completed. Preparing your feedback."


class InterviewSetupStrategy(DialogueStrategy):
    """Voice wizard collecting the parameters of a new interview."""

    mode: DialogueMode = "setup"

    def default_questions(self) -> tuple[str, ...]:
        return SETUP_QUESTIONS

    def introduction(self, total_questions: int) -> str:
        return "Welcome to interview setup. I will help you create a custom interview."

    def question_message(self, index: int, question: str) -> str:
        return question

    def acknowledgement(self, skipped: bool) -> str:
        return "No problem, I will use the default." if skipped else "Got it."

    def closing(self) -> str:
        return "Excellent! I have all the information. Creating your interview now."

    def interview_params(
        self, transcript: Sequence[TurnRecord], user_id: str | None
    ) -> InterviewParams | None:
        answers: list[str | None] = [None] * len(SETUP_QUESTIONS)
        for turn in transcript:
            if turn.question_index < len(answers) and not turn.skipped:
                answers[turn.question_index] = turn.answer_text
        return parse_setup_answers(answers, user_id=user_id)


def _parse_type(answer: str) -> str:
    text = answer.lower()
    if "mix" in text or "both" in text:
        return "mixed"
    if "behavio" in text:
        return "behavioral"
    return "technical"


def _parse_role(answer: str) -> str | None:
    role = answer.strip().rstrip(".!")
    role = _ROLE_LEAD_IN_RE.sub("", role)
    role = _ROLE_SUFFIX_RE.sub("", role).strip()
    if not role:
        return None
    return role[0].upper() + role[1:]


def _parse_level(answer: str) -> str:
    text = answer.lower()
    if "junior" in text or "entry" in text:
        return "Junior"
    if "senior" in text or "lead" in text or "staff" in text:
        return "Senior"
    return "Mid-level"


def parse_techstack(answer: str) -> list[str]:
    parts = [p.strip().rstrip(".") for p in _STACK_SPLIT_RE.split(answer)]
    return [p for p in parts if p]


def _parse_amount(answer: str) -> int | None:
    match = re.search(r"\d+", answer)
    if match:
        value = int(match.group())
    else:
        words = re.findall(r"[a-z]+", answer.lower())
        value = next((_NUMBER_WORDS[w] for w in words if w in _NUMBER_WORDS), 0)
    if value <= 0:
        return None
    return max(1, min(value, 15))


def parse_setup_answers(
    answers: Sequence[str | None], *, user_id: str | None = None
) -> InterviewParams:
    """
    Turn free-form setup answers into interview parameters.

    Args:
        answers: One entry per SETUP_QUESTIONS item; None for skipped turns.
        user_id: Owner of the interview to be generated.

    Returns:
        InterviewParams with defaults for anything missing or unparseable.
    """
    padded = list(answers) + [None] * (len(SETUP_QUESTIONS) - len(answers))
    type_answer, role_answer, level_answer, stack_answer, amount_answer = padded[: len(SETUP_QUESTIONS)]

    params = InterviewParams(user_id=user_id)
    updates: dict = {}
    if type_answer:
        updates["type"] = _parse_type(type_answer)
    if role_answer:
        role = _parse_role(role_answer)
        if role:
            updates["role"] = role
    if level_answer:
        updates["level"] = _parse_level(level_answer)
    if stack_answer:
        updates["techstack"] = parse_techstack(stack_answer)
    if amount_answer:
        amount = _parse_amount(amount_answer)
        if amount:
            updates["amount"] = amount
    return params.model_copy(update=updates)
