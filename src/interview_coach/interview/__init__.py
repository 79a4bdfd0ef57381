"""
Interview module: question generation, feedback scoring and their records.

Services live in `interview_coach.interview.question_generator` and
`interview_coach.interview.feedback`.
"""

from interview_coach.interview.schemas import (
    FEEDBACK_CATEGORIES,
    CategoryScore,
    Feedback,
    FeedbackResult,
    GeneratedInterview,
    Interview,
)

__all__ = [
    "Interview",
    "Feedback",
    "CategoryScore",
    "FeedbackResult",
    "GeneratedInterview",
    "FEEDBACK_CATEGORIES",
]
