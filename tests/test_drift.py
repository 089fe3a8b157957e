from govqa.graph.drift import (
    answer_entities,
    detect_answer_drift,
    has_analogy_framing,
    off_topic_entities,
    situation_coverage,
)
from govqa.schemas.situation import SituationContext

PARK = SituationContext(title="Constitution Park boardwalk vote", entities=["Constitution Park", "Select Board"])


def test_no_situation_means_no_drift():
    report = detect_answer_drift("Maple Street Bridge was rebuilt.", None)
    assert report.has_drift is False
    assert report.severity == "none"


def test_on_topic_answer():
    text = "The Select Board voted on the Constitution Park boardwalk after a public hearing."
    report = detect_answer_drift(text, PARK)
    assert report.has_drift is False
    assert report.situation_coverage == 1.0


def test_unframed_entity_is_drift():
    text = "The Select Board discussed Constitution Park. Maple Street Bridge repairs were approved."
    assert "Maple Street Bridge" in off_topic_entities(text, PARK)
    report = detect_answer_drift(text, PARK)
    assert report.has_drift is True
    assert report.severity == "minor"
    assert report.missing_analogy_framing is True


def test_analogy_framing_is_tolerated():
    text = "The Select Board discussed Constitution Park. For comparison, Maple Street Bridge repairs were approved."
    assert has_analogy_framing(text, "Maple Street Bridge")
    report = detect_answer_drift(text, PARK)
    assert report.has_drift is False
    assert "Maple Street Bridge" in report.drifted_to


def test_low_coverage_is_major():
    report = detect_answer_drift("The library roof needs work.", PARK)
    assert report.has_drift is True
    assert report.severity == "major"
    assert situation_coverage("The library roof needs work.", PARK) == 0.0


def test_entity_extraction_is_case_sensitive():
    assert answer_entities("maple street bridge") == []
    assert "Smith" in answer_entities("Smith's property was surveyed.")
