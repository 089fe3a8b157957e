from govqa.graph.situation_update import (
    decide_situation_update,
    extract_entities_heuristic,
    extract_time_range,
    generate_situation_title,
    is_broadening,
)
from govqa.schemas.situation import SituationContext

EXISTING = SituationContext(title="park - vote", entities=["park", "vote", "select board"])


def test_entities_and_title():
    entities = extract_entities_heuristic("The planning board held a hearing about the trail at the library.")
    assert entities == ["planning board", "library", "hearing", "trail"]
    assert generate_situation_title(entities) == "library - hearing"
    assert generate_situation_title([]) == "Current discussion"


def test_time_range():
    rng = extract_time_range("Between March 4, 2024 and 2024-05-01 the board met.")
    assert rng.start == "March 4, 2024"
    assert rng.end == "2024-05-01"
    assert extract_time_range("no dates here") is None


def test_broadening_clears_situation():
    assert is_broadening("How does this work statewide?")
    update = decide_situation_update("In general, how are budgets set?", EXISTING)
    assert update.should_update is True
    assert update.new_context is None


def test_new_situation_needs_two_entities_or_artifact():
    update = decide_situation_update("The school board vote on the bridge", None)
    assert update.should_update is True
    assert update.new_context.entities == ["school board", "school", "vote", "bridge"]

    assert decide_situation_update("What is a quorum?", None).should_update is False

    with_artifact = decide_situation_update("What is a quorum?", None, has_artifact=True)
    assert with_artifact.should_update is True
    assert with_artifact.new_context.source_refs == ["user_artifact"]


def test_significant_new_entities_extend_situation():
    update = decide_situation_update("The conservation commission hearing on the subdivision", EXISTING)
    assert update.should_update is True
    assert update.new_context.entities[:3] == EXISTING.entities
    assert "conservation commission" in update.new_context.entities


def test_overlap_keeps_existing():
    update = decide_situation_update("Who maintains the park?", EXISTING)
    assert update.should_update is False
    assert update.new_context == EXISTING
    assert update.confidence == 0.85
