"""Utilities for turning model output into text a TTS engine can read aloud.

Generated questions and spoken prompts must never feed the synthesizer:
- markdown / code fences
- symbols that engines spell out ("asterisk", "hash")
- runs of whitespace and escaped newlines
"""

from __future__ import annotations

import re

_CODE_FENCE_RE = re.compile(r"```[a-zA-Z]*")
_ESCAPED_NEWLINE_RE = re.compile(r"\\n")
_TTS_HOSTILE_RE = re.compile(r"[`~@#$%^&*_=+<>|\\]")
_REPEATED_QUOTES_RE = re.compile(r"[\"']{2,}")
_WRAPPING_QUOTES_RE = re.compile(r"^\s*[\"']|[\"']\s*$")
_WHITESPACE_RE = re.compile(r"\s+")


def to_speakable(text: str, *, max_chars: int | None = None) -> str:
    """Return `text` with TTS-hostile characters removed and whitespace collapsed.

    When `max_chars` is set, the result is cut at the last sentence boundary
    that fits, or hard-truncated if there is none.
    """
    s = text or ""
    s = _CODE_FENCE_RE.sub(" ", s)
    s = _ESCAPED_NEWLINE_RE.sub(" ", s)
    s = _WHITESPACE_RE.sub(" ", s)
    s = _REPEATED_QUOTES_RE.sub('"', s)
    s = _WRAPPING_QUOTES_RE.sub("", s)
    s = _TTS_HOSTILE_RE.sub("", s)
    s = _WHITESPACE_RE.sub(" ", s).strip()

    if max_chars is not None and len(s) > max_chars:
        cut = s[:max_chars]
        boundary = max(cut.rfind(". "), cut.rfind("? "), cut.rfind("! "))
        s = cut[: boundary + 1] if boundary > 0 else cut.rstrip()

    return s
