from conftest import chunk
from govqa.graph.sources import (
    classify_doc_source_type,
    count_paragraphs,
    detect_content_type,
    detect_session_source,
    display_title,
    extract_source_title,
    source_document_names,
)

MINUTES = (
    "Selectboard Minutes, March 4, 2024\n\n"
    "Present: J. Smith, A. Jones, R. Lee. Meeting called to order at 6:00 pm.\n\n"
    "Motion to award the boardwalk maintenance contract to the low bidder. Seconded. All in favor.\n\n"
    + "Discussion of the recreation budget and the warrant article for next year continued at length. " * 6
    + "\n\nAdjourned at 8:15 pm."
)


def test_short_question_is_not_a_source():
    detection = detect_session_source("What did the board decide?")
    assert detection.is_session_source is False
    assert detection.artifact is None


def test_minutes_paste_is_detected():
    detection = detect_session_source(MINUTES)
    assert detection.is_session_source is True
    assert detection.artifact.content_type == "minutes"
    assert detection.artifact.title == "Selectboard Minutes, March 4, 2024"
    assert detection.reason.startswith("Detected as minutes")


def test_content_type_classification():
    assert detect_content_type("Published March 3. By Jane Doe, Staff Writer") == "article"
    assert detect_content_type("WHEREAS the town has adopted a policy") == "document"
    assert detect_content_type("just some text") == "paste"


def test_title_falls_back_to_meeting_date():
    text = "x" * 120 + "\nThe meeting of March 4, 2024 was held."
    assert extract_source_title(text, "minutes") == "Meeting March 4, 2024"
    assert extract_source_title(text, "paste") is None
    assert extract_source_title("", "paste") is None


def test_count_paragraphs_ignores_short_blocks():
    text = "short\n\n" + "a" * 60 + "\n\n" + "b" * 60
    assert count_paragraphs(text) == 2


def test_doc_source_type():
    assert classify_doc_source_type(2, 3) == "mixed"
    assert classify_doc_source_type(2, 0) == "local"
    assert classify_doc_source_type(0, 1) == "statewide"
    assert classify_doc_source_type(0, 0) == "none"


def test_source_document_names():
    chunks = [
        chunk("https://archive.example.org/documents/warrant-2024.pdf", lane="local"),
        chunk("[Minutes] Selectboard March", lane="local"),
        chunk("[Minutes] Selectboard March", lane="local"),
        chunk("RSA 32:5"),
    ]
    assert source_document_names(chunks) == ["warrant-2024.pdf", "Selectboard March", "RSA 32:5"]
    assert display_title("Plain title") == "Plain title"
