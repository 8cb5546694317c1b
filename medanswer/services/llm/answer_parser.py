"""Parsing of the summarization pass response.

Grammar:
    response   := line*
    short      := first non-blank line that is not a bare label
    detail     := remaining non-blank, non-label lines joined by newlines,
                  or ``short`` when there are none

A label is one of "short answer", "detailed summary", "detailed answer",
"summary" or "answer", optionally wrapped in markdown emphasis or heading
markers and followed by a colon. Leading labels ("Answer: ...") are removed
from content lines, along with "Here is:" and "The answer is:".
"""

import re
from dataclasses import dataclass

NO_ANSWER = "No answer generated"

_DECORATION = r"[\s*#_>\-]*"
_TRAILING = r"[\s*_]*"

_LABEL_ONLY = re.compile(
    rf"^{_DECORATION}(short answer|detailed summary|detailed answer|summary|answer)"
    rf"{_TRAILING}:?{_TRAILING}$",
    re.IGNORECASE,
)

_LABEL_PREFIX = re.compile(
    rf"^{_DECORATION}(short answer|detailed summary|detailed answer|summary|answer|here is|the answer is)"
    rf"{_TRAILING}:{_TRAILING}",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ParsedSummary:
    short_answer: str
    detailed_summary: str


def strip_label(line: str) -> str:
    """Remove a leading label such as ``**Short answer:**`` from a line."""
    return _LABEL_PREFIX.sub("", line, count=1).strip()


def is_label_only(line: str) -> bool:
    return bool(_LABEL_ONLY.match(line))


def parse_summary_response(text: str) -> ParsedSummary:
    """Split a summarization response into short answer and detail."""
    lines = []
    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line or is_label_only(line):
            continue
        line = strip_label(line)
        if line:
            lines.append(line)

    if not lines:
        return ParsedSummary(short_answer=NO_ANSWER, detailed_summary=NO_ANSWER)

    short_answer = lines[0]
    detailed_summary = "\n".join(lines[1:]) or short_answer
    return ParsedSummary(short_answer=short_answer, detailed_summary=detailed_summary)
