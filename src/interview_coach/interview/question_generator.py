"""
Interview question generation.

Asks the completion model for a JSON array of questions, parses whatever
comes back, cleans it for speech, and falls back to a canned, role-aware set
when the model is unavailable or returns nothing usable.
"""

import json
import logging
import re
from typing import Any

from interview_coach.db.repository import InterviewRepository
from interview_coach.dialogue.schemas import InterviewParams
from interview_coach.interview.schemas import GeneratedInterview, Interview
from interview_coach.models.llm_client import LLMClientBase, Message, find_json_span, parse_json_loose

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a professional interview question generator. "
    "ALWAYS respond with valid JSON arrays only. No explanations."
)

QUESTION_PROMPT_TEMPLATE = """You are a technical interview specialist. Generate {amount} interview questions with these specifications:

JOB DETAILS:
- Role: {role}
- Experience Level: {level}
- Tech Stack: {techstack}
- Question Focus: {type}

IMPORTANT FORMATTING RULES:
1. Return ONLY a valid JSON array of strings
2. Each string should be a complete interview question
3. Questions must be suitable for voice synthesis (no special characters like /, *, emojis)
4. No explanations, no markdown, no additional text
5. Maximum 15 words per question for clarity

EXAMPLE FORMAT:
["What experience do you have with React hooks?", "How do you handle state management in large applications?"]

QUESTIONS:"""

# Model chatter that sometimes leaks into the list.
_CHATTER_PREFIXES = (
    "<think>",
    "</think>",
    "okay",
    "alright",
    "let me",
    "first,",
    "i need to",
    "so",
    "well,",
    "hmm,",
    "um,",
    "ah,",
    "that should cover",
    "here are",
    "questions:",
    "technical questions:",
    "behavioral questions:",
)
_CHATTER_RE = re.compile(
    r"^(?:" + "|".join(re.escape(p) + (r"\b" if p[-1].isalnum() else "") for p in _CHATTER_PREFIXES) + ")",
    re.IGNORECASE,
)
_GENERIC_RE = re.compile(r"^(?:what is your|tell me about|can you describe)", re.IGNORECASE)
_MAX_GENERIC_INDEX = 2

_NUMBERING_RE = re.compile(r"^\d+[.)]\s*")
_LETTERING_RE = re.compile(r"^[a-zA-Z][.)]\s+")
_BULLET_RE = re.compile(r"^[-*•]\s*")
_EDGE_QUOTES_RE = re.compile(r"^[\"']|[\"'],?$")
_QUESTION_WORDS = ("how", "what", "why", "describe", "explain")

_TTS_HOSTILE_RE = re.compile(r"[`~@#$%^&*_=+<>]")

BASE_FALLBACK_QUESTIONS: tuple[str, ...] = (
    "Tell me about your experience relevant to this role.",
    "What attracted you to our company and this position?",
    "How do you stay updated with industry trends and new technologies?",
    "Describe a challenging project you worked on and how you overcame the difficulties.",
    "How do you prioritize tasks when working on multiple projects?",
    "What development methodologies are you familiar with?",
    "How do you handle constructive criticism or feedback on your work?",
    "Where do you see yourself professionally in three to five years?",
    "What are your strengths and areas for improvement?",
    "Do you have any questions for me about the role or company?",
)

_TECHNICAL_KEYWORDS = ("experience", "technologies", "project", "methodologies")
_BEHAVIORAL_KEYWORDS = ("attracted", "challenging", "prioritize", "criticism", "strengths")

ROLE_FALLBACK_QUESTIONS: dict[str, tuple[str, ...]] = {
    "frontend": (
        "How do you ensure your applications are accessible?",
        "What is your approach to responsive design?",
        "How do you optimize website performance?",
    ),
    "backend": (
        "How do you design scalable APIs?",
        "What is your experience with database optimization?",
        "How do you handle data security and privacy?",
    ),
    "fullstack": (
        "How do you manage state across frontend and backend?",
        "What is your approach to API design for frontend consumption?",
        "How do you ensure consistency between different parts of the application?",
    ),
}

MAX_FALLBACK_QUESTIONS = 10


def build_question_prompt(params: InterviewParams) -> str:
    techstack = ", ".join(params.techstack) if params.techstack else "General technology"
    return QUESTION_PROMPT_TEMPLATE.format(
        amount=params.amount,
        role=params.role,
        level=params.level,
        techstack=techstack,
        type=params.type,
    )


def _strings(items: Any) -> list[str]:
    if not isinstance(items, list):
        return []
    return [str(item) for item in items if isinstance(item, (str, int, float)) and str(item).strip()]


def parse_generated_text(text: str, expected_count: int) -> list[str]:
    """
    Extract candidate questions from raw model output.

    Tries, in order: the whole text as a JSON array, the first bracketed
    array inside it, then one question per line.

    Args:
        text: Raw model output.
        expected_count: Maximum number of questions returned.
    """
    cleaned = (text or "").strip()
    if not cleaned:
        return []

    # Method 1: the whole response is the array.
    if cleaned.startswith("[") and cleaned.endswith("]"):
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.debug("Whole-response JSON parse failed, trying array extraction")
        else:
            if isinstance(parsed, list):
                return _strings(parsed)[:expected_count]

    # Method 2: an array embedded in prose or a code fence.
    span = find_json_span(cleaned, "[")
    if span:
        parsed = parse_json_loose(span)
        if isinstance(parsed, list) and _strings(parsed):
            return _strings(parsed)[:expected_count]
        logger.debug("Array extraction failed, falling back to line heuristics")

    # Method 3: one question per line.
    questions: list[str] = []
    for line in cleaned.splitlines():
        trimmed = line.strip()
        lowered = trimmed.lower()
        if (
            not trimmed
            or trimmed.startswith("```")
            or trimmed.startswith("{")
            or trimmed in ("[", "]")
            or "here are" in lowered
            or "example" in lowered
        ):
            continue

        question = _NUMBERING_RE.sub("", trimmed)
        question = _LETTERING_RE.sub("", question)
        question = _BULLET_RE.sub("", question)
        question = _EDGE_QUOTES_RE.sub("", question).strip()

        lowered = question.lower()
        if 10 < len(question) < 200 and (
            question.endswith("?") or any(word in lowered for word in _QUESTION_WORDS)
        ):
            questions.append(question)
        if len(questions) >= expected_count:
            break

    return questions


def _speech_safe(question: str) -> str:
    q = question.replace("\\n", " ")
    q = re.sub(r"\s+", " ", q)
    q = re.sub(r"[\"']{2,}", '"', q)
    q = re.sub(r"^\s*[\"']|[\"']\s*$", "", q)
    q = _TTS_HOSTILE_RE.sub("", q)
    return q.strip()


def clean_questions(questions: list[Any]) -> list[str]:
    """
    Filter and normalize generated questions for speaking.

    Drops non-strings, too-short or too-long entries, model chatter and
    duplicates. Generic openers ("Tell me about...") survive only in the
    first two positions.
    """
    seen: set[str] = set()
    result: list[str] = []

    for index, item in enumerate(questions):
        if not isinstance(item, str):
            continue
        trimmed = item.strip()
        if len(trimmed) < 10 or len(trimmed) > 250:
            continue
        if _CHATTER_RE.match(trimmed):
            continue
        if _GENERIC_RE.match(trimmed) and index >= _MAX_GENERIC_INDEX:
            continue

        normalized = trimmed.casefold()
        if normalized in seen:
            continue
        seen.add(normalized)

        question = _speech_safe(trimmed)
        if question:
            result.append(question)

    return result


def fallback_questions(role: str, level: str, type: str) -> list[str]:
    """
    Canned questions used when generation fails.

    Args:
        role: Role being interviewed for; frontend/backend/fullstack add extras.
        level: Experience level (currently unused by the canned set).
        type: technical or behavioral narrows the base set.
    """
    kind = type.lower()
    questions = list(BASE_FALLBACK_QUESTIONS)
    if "technical" in kind:
        questions = [q for q in questions if any(k in q.lower() for k in _TECHNICAL_KEYWORDS)]
    elif "behavioral" in kind:
        questions = [q for q in questions if any(k in q.lower() for k in _BEHAVIORAL_KEYWORDS)]

    role_key = role.lower().replace(" ", "").replace("-", "")
    for key, extras in ROLE_FALLBACK_QUESTIONS.items():
        if key in role_key:
            questions.extend(extras)
            break

    return questions[:MAX_FALLBACK_QUESTIONS]


class QuestionGenerator:
    """Generates, cleans and persists the question set of a practice interview."""

    def __init__(
        self,
        llm: LLMClientBase,
        interviews: InterviewRepository | None = None,
    ) -> None:
        self._llm = llm
        self._interviews = interviews

    async def generate(self, params: InterviewParams) -> GeneratedInterview:
        """
        Produce questions for `params` and save them as an interview record.

        Never raises for model or storage failures: the model falling over
        yields the canned set, a failed save leaves `interview.id` unset.
        """
        logger.info(f"Generating {params.amount} {params.type} questions for {params.level} {params.role}")

        response = await self._llm.chat(
            [
                Message(role="system", content=SYSTEM_PROMPT),
                Message(role="user", content=build_question_prompt(params)),
            ],
            temperature=0.8,
            max_tokens=1000,
            top_p=0.95,
        )

        questions: list[str] = []
        error: str | None = None
        if response.ok:
            logger.debug(f"Raw question response: {response.content[:200]}")
            questions = clean_questions(parse_generated_text(response.content, params.amount))
            if not questions:
                error = "No valid questions generated after cleaning"
        else:
            error = str(response.raw_response.get("error") or "Empty response from model")

        source = "llm"
        if not questions:
            logger.warning(f"Using fallback questions: {error}")
            questions = fallback_questions(params.role, params.level, params.type)[: params.amount]
            source = "fallback"

        interview = Interview(
            role=params.role,
            type=params.type,
            level=params.level,
            techstack=params.techstack,
            questions=questions,
            user_id=params.user_id,
            finalized=True,
            question_count=len(questions),
            source=source,
        )

        if self._interviews is not None:
            try:
                interview = await self._interviews.create(interview)
                logger.info(f"Saved interview {interview.id} with {len(questions)} questions")
            except Exception as e:
                logger.error(f"Failed to save interview, continuing with unsaved questions: {e}")

        return GeneratedInterview(questions=questions, source=source, interview=interview, error=error)
