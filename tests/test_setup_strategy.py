from interview_coach.dialogue.schemas import SKIPPED_ANSWER, TurnRecord
from interview_coach.dialogue.strategies import (
    SETUP_QUESTIONS,
    InterviewSetupStrategy,
    PracticeInterviewStrategy,
    parse_setup_answers,
    parse_techstack,
)


def test_parse_setup_answers_reads_free_form_speech():
    params = parse_setup_answers(
        [
            "Let's do a mix of both",
            "I'm applying for a Data Engineer position",
            "entry level please",
            "Python, Spark & Airflow",
            "give me three",
        ],
        user_id="u1",
    )

    assert params.type == "mixed"
    assert params.role == "Data Engineer"
    assert params.level == "Junior"
    assert params.techstack == ["Python", "Spark", "Airflow"]
    assert params.amount == 3
    assert params.user_id == "u1"


def test_parse_setup_answers_defaults_for_missing_or_unparseable():
    params = parse_setup_answers([None, "", "I am not sure", None, "lots"])

    assert params.type == "technical"
    assert params.role == "Software Engineer"
    assert params.level == "Mid-level"
    assert params.techstack == []
    assert params.amount == 5


def test_amount_is_clamped():
    assert parse_setup_answers([None, None, None, None, "50 questions"]).amount == 15
    assert parse_setup_answers([None, None, None, None, "10"]).amount == 10


def test_parse_techstack_keeps_compound_names():
    assert parse_techstack("Node.js and React, CI/CD.") == ["Node.js", "React", "CI/CD"]
    assert parse_techstack("") == []


def test_setup_strategy_ignores_skipped_turns():
    transcript = [
        TurnRecord(question_index=0, question_text=SETUP_QUESTIONS[0], answer_text="behavioral"),
        TurnRecord(question_index=1, question_text=SETUP_QUESTIONS[1], answer_text=SKIPPED_ANSWER),
    ]

    params = InterviewSetupStrategy().interview_params(transcript, "u9")

    assert params.type == "behavioral"
    assert params.role == "Software Engineer"
    assert params.user_id == "u9"


def test_practice_strategy_lines():
    strategy = PracticeInterviewStrategy()

    assert strategy.question_message(0, "Why Python?") == "Question 1: Why Python?"
    assert strategy.spoken_question(2, "Why Python?") == "Question 3. Why Python?"
    assert strategy.skip_message(1) == "[Skipped question 2]"
    assert strategy.listening_prompt() == "When ready, press Enter to submit your answer."
    assert strategy.acknowledgement(skipped=True) == "Question skipped."
    assert strategy.interview_params([], None) is None
    assert strategy.default_questions() == ()
