"""
Feedback scoring.

Formats a finished interview transcript, asks the completion model for a
fixed evaluation schema, normalizes whatever comes back and stores it.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any

from interview_coach.db.repository import FeedbackRepository
from interview_coach.dialogue.schemas import TranscriptMessage
from interview_coach.interview.schemas import FEEDBACK_CATEGORIES, CategoryScore, Feedback, FeedbackResult
from interview_coach.models.llm_client import LLMClientBase, find_json_span, parse_json_loose

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_SCORE = 75
DEFAULT_CATEGORY_SCORE = 70
DEFAULT_CATEGORY_COMMENT = "Evaluation based on interview performance"
DEFAULT_FINAL_ASSESSMENT = "Evaluation completed based on interview performance."
MAX_LIST_ITEMS = 5

FEEDBACK_PROMPT_TEMPLATE = """You are an AI interviewer analyzing a mock interview. Your task is to evaluate the candidate based on structured categories.

INTERVIEW TRANSCRIPT:
{transcript}

IMPORTANT FORMATTING RULES:
1. Return ONLY a valid JSON object with this exact structure:
{{
  "totalScore": 85,
  "categoryScores": [
    {{"name": "Communication Skills", "score": 80, "comment": "Clear and structured responses with good articulation"}},
    {{"name": "Technical Knowledge", "score": 85, "comment": "Good understanding of relevant concepts"}},
    {{"name": "Problem Solving", "score": 90, "comment": "Strong analytical and problem-solving skills"}},
    {{"name": "Cultural Fit", "score": 75, "comment": "Good alignment with company values and role requirements"}},
    {{"name": "Confidence and Clarity", "score": 85, "comment": "Confident delivery and clear communication"}}
  ],
  "strengths": ["Strong technical foundation", "Clear communication style", "Good problem-solving approach"],
  "areasForImprovement": ["Could provide more specific examples", "Work on time management during responses", "Include more detailed explanations"],
  "finalAssessment": "Candidate demonstrates strong technical knowledge and good communication skills. Shows potential for the role with some areas for improvement in providing detailed examples and structuring responses."
}}

2. categoryScores MUST be an array of exactly 5 objects
3. Each categoryScore object MUST have: name, score (0-100), and comment
4. strengths MUST be an array of strings
5. areasForImprovement MUST be an array of strings
6. No explanations, no markdown, no additional text outside the JSON object"""

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_JSON_LABEL_RE = re.compile(r"^JSON:\s*", re.IGNORECASE)


class FeedbackParseError(ValueError):
    """The model response did not contain a usable evaluation."""


def format_transcript(transcript: Sequence[TranscriptMessage | Mapping[str, Any]]) -> str:
    """Render messages as `- role: content` lines."""
    lines = []
    for message in transcript:
        if isinstance(message, TranscriptMessage):
            role, content = message.role, message.content
        else:
            role, content = message.get("role", ""), message.get("content", "")
        lines.append(f"- {role}: {content}\n")
    return "".join(lines)


def _clamp_score(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(round(max(0.0, min(100.0, float(value)))))


def _string_items(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)][:MAX_LIST_ITEMS]


def normalize_feedback(data: Mapping[str, Any]) -> dict[str, Any]:
    """
    Coerce a parsed evaluation into the stored feedback shape.

    Raises:
        FeedbackParseError: If `categoryScores` is missing or not a list.
    """
    raw_categories = data.get("categoryScores")
    if not isinstance(raw_categories, list):
        raise FeedbackParseError("Invalid category scores format")

    categories: list[CategoryScore] = []
    for index, item in enumerate(raw_categories[: len(FEEDBACK_CATEGORIES)]):
        item = item if isinstance(item, Mapping) else {}
        default_name = FEEDBACK_CATEGORIES[index]
        categories.append(
            CategoryScore(
                name=str(item.get("name") or default_name),
                score=_clamp_score(item.get("score"), DEFAULT_CATEGORY_SCORE),
                comment=str(item.get("comment") or DEFAULT_CATEGORY_COMMENT),
            )
        )

    final_assessment = data.get("finalAssessment")
    return {
        "total_score": _clamp_score(data.get("totalScore"), DEFAULT_TOTAL_SCORE),
        "category_scores": categories,
        "strengths": _string_items(data.get("strengths")),
        "areas_for_improvement": _string_items(data.get("areasForImprovement")),
        "final_assessment": final_assessment if isinstance(final_assessment, str) else DEFAULT_FINAL_ASSESSMENT,
    }


def parse_feedback(text: str) -> dict[str, Any]:
    """
    Parse and normalize a raw model evaluation.

    Raises:
        FeedbackParseError: If no JSON object can be recovered.
    """
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    cleaned = _JSON_LABEL_RE.sub("", cleaned.strip()).strip()

    parsed = parse_json_loose(cleaned)
    if not isinstance(parsed, dict):
        span = find_json_span(cleaned, "{")
        if span is None:
            raise FeedbackParseError("No valid evaluation data found")
        parsed = parse_json_loose(span)
        if not isinstance(parsed, dict):
            raise FeedbackParseError("Invalid JSON response from AI")

    return normalize_feedback(parsed)


class FeedbackService:
    """Scores completed interviews and stores the feedback."""

    def __init__(self, llm: LLMClientBase, feedback: FeedbackRepository) -> None:
        self._llm = llm
        self._feedback = feedback

    async def create_feedback(
        self,
        interview_id: str | None,
        user_id: str | None,
        transcript: Sequence[TranscriptMessage | Mapping[str, Any]],
    ) -> FeedbackResult:
        """
        Score a transcript and persist the feedback.

        Args:
            interview_id: Interview the transcript belongs to.
            user_id: Owner of the interview.
            transcript: Chat-style messages of the finished session.

        Returns:
            FeedbackResult; failures are reported in `error`, not raised.
        """
        if not interview_id or not user_id:
            logger.error(f"Missing ids for feedback: interview_id={interview_id!r} user_id={user_id!r}")
            return FeedbackResult(success=False, error="Missing interview ID or user ID")
        if not transcript:
            return FeedbackResult(success=False, error="Invalid or empty transcript")

        logger.info(f"Generating feedback for interview {interview_id} ({len(transcript)} messages)")
        prompt = FEEDBACK_PROMPT_TEMPLATE.format(transcript=format_transcript(transcript))
        response = await self._llm.complete(prompt, temperature=0.3)

        if response.finish_reason == "error":
            error = response.raw_response.get("error", "unknown error")
            return FeedbackResult(success=False, error=f"Model error: {error}")
        if not response.content.strip():
            return FeedbackResult(success=False, error="Empty response from AI")

        try:
            data = parse_feedback(response.content)
        except FeedbackParseError as e:
            logger.warning(f"Could not parse feedback: {e}")
            logger.debug(f"Raw feedback response: {response.content[:500]}")
            return FeedbackResult(success=False, error=str(e))

        if not data["category_scores"]:
            return FeedbackResult(success=False, error="AI returned invalid evaluation format")

        feedback = Feedback(
            interview_id=interview_id,
            user_id=user_id,
            model=response.model,
            **data,
        )

        try:
            feedback = await self._feedback.create(feedback)
        except Exception as e:
            logger.error(f"Failed to save feedback for interview {interview_id}: {e}")
            return FeedbackResult(success=False, feedback=feedback, error=f"Failed to save feedback: {e}")

        logger.info(f"Saved feedback {feedback.id} total_score={feedback.total_score}")
        return FeedbackResult(success=True, feedback_id=feedback.id, feedback=feedback)

    async def get_feedback(self, interview_id: str, user_id: str) -> Feedback | None:
        """Get the feedback a user received for an interview."""
        return await self._feedback.get_by_interview(interview_id, user_id)
