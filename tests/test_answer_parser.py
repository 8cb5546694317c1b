import pytest

from medanswer.services.llm.answer_parser import (
    NO_ANSWER,
    is_label_only,
    parse_summary_response,
    strip_label,
)


def test_plain_two_part_response():
    parsed = parse_summary_response(
        "The patient takes metformin.\n\nMetformin 500mg twice daily since 2023."
    )

    assert parsed.short_answer == "The patient takes metformin."
    assert parsed.detailed_summary == "Metformin 500mg twice daily since 2023."


def test_labelled_lines_are_stripped():
    parsed = parse_summary_response(
        "Short answer: The patient takes metformin.\n"
        "Detailed summary: Metformin 500mg daily since 2023."
    )

    assert parsed.short_answer == "The patient takes metformin."
    assert parsed.detailed_summary == "Metformin 500mg daily since 2023."


def test_label_only_lines_are_skipped():
    parsed = parse_summary_response(
        "Short answer:\nTakes metformin.\n\nDetailed summary:\nLine one\nLine two"
    )

    assert parsed.short_answer == "Takes metformin."
    assert parsed.detailed_summary == "Line one\nLine two"


def test_single_line_reuses_short_answer_as_detail():
    parsed = parse_summary_response("## Summary\nThe patient is stable.")

    assert parsed.short_answer == "The patient is stable."
    assert parsed.detailed_summary == "The patient is stable."


@pytest.mark.parametrize("text", ["", "   \n\n  ", "Answer:", "**Summary**\n\nShort answer:"])
def test_empty_or_label_only_response(text):
    parsed = parse_summary_response(text)
    assert parsed.short_answer == NO_ANSWER
    assert parsed.detailed_summary == NO_ANSWER


def test_none_response():
    assert parse_summary_response(None).short_answer == NO_ANSWER


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("Short answer: Takes metformin.", "Takes metformin."),
        ("**Short Answer:** Takes metformin.", "Takes metformin."),
        ("**Short answer**: Takes metformin.", "Takes metformin."),
        ("> **Detailed Answer:** Two medications.", "Two medications."),
        ("- Answer: yes", "yes"),
        ("SUMMARY: stable", "stable"),
        ("Here is: metformin", "metformin"),
        ("The answer is: two medications", "two medications"),
        ("__Answer__: noted", "noted"),
    ],
)
def test_strip_label_variants(line, expected):
    assert strip_label(line) == expected


@pytest.mark.parametrize(
    "line",
    [
        "Summary of care: continue current plan",
        "Answers vary by visit",
        "- Metformin 500mg",
        "Metformin: 500mg daily",
        "Answer given by Dr. Smith",
    ],
)
def test_content_that_only_looks_like_a_label_is_kept(line):
    assert strip_label(line) == line
    assert not is_label_only(line)


@pytest.mark.parametrize(
    "line",
    ["Answer", "answer:", "**Short answer:**", "## Detailed summary", "  Summary :  ", "*Answer*"],
)
def test_label_only_detection(line):
    assert is_label_only(line)


def test_bullets_in_detail_are_preserved():
    parsed = parse_summary_response(
        "The patient takes two medications.\n\n- Metformin 500mg\n- Lisinopril 10mg"
    )
    assert parsed.detailed_summary == "- Metformin 500mg\n- Lisinopril 10mg"


def test_only_first_label_is_removed():
    assert strip_label("Answer: Summary: stable") == "Summary: stable"


def test_windows_line_endings():
    parsed = parse_summary_response("Short answer: yes\r\n\r\nDetail: none recorded\r\n")

    assert parsed.short_answer == "yes"
    assert parsed.detailed_summary == "Detail: none recorded"
