from interview_coach.voice.speakable import to_speakable


def test_to_speakable_strips_markdown_and_symbols():
    assert to_speakable("**Question 1.** Explain `asyncio.gather`") == "Question 1. Explain asyncio.gather"
    assert to_speakable("```python\nprint(1)\n```") == "print(1)"
    assert to_speakable('"What is REST?"') == "What is REST?"
    assert to_speakable("Line one\\nLine two") == "Line one Line two"


def test_to_speakable_truncates_at_sentence_boundary():
    text = "First sentence here. Second sentence is much longer than the limit allows."

    assert to_speakable(text, max_chars=30) == "First sentence here."
    assert to_speakable("no boundary at all in this text", max_chars=10) == "no boundar"


def test_to_speakable_handles_empty_input():
    assert to_speakable("") == ""
    assert to_speakable(None) == ""  # type: ignore[arg-type]
