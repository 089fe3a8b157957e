import time

from govqa.graph.stage_log import emit, push_note, set_status
from govqa.schemas.answer import StageStatus
from govqa.schemas.situation import Artifact, SituationContext
from govqa.session.store import MAX_SESSION_ARTIFACTS, InMemorySessionStore
from govqa.stream.emitter import Emitter, EventCollector


def test_emitter_wraps_events():
    collector = EventCollector()
    em = Emitter(request_id="r1", session_id="s1", send=collector)
    em.emit("plan_complete", {"status": "ok"})

    event = collector.events[0]
    assert event["type"] == "plan_complete"
    assert event["request_id"] == "r1"
    assert event["session_id"] == "s1"
    assert event["data"] == {"status": "ok"}
    assert event["ts_ms"] > 0


def test_emitter_without_sink_is_silent():
    Emitter(request_id="r1", session_id=None).emit("run_start", {})


def test_stage_log_helpers_do_not_mutate_state():
    state = {"stage_status": {"gate": StageStatus.OK}, "stage_notes": []}
    statuses = set_status(state, "plan", StageStatus.RECOVERED_WITH_HEURISTIC)
    notes = push_note(state, node="plan", summary="Heuristic plan substituted")

    assert statuses == {"gate": StageStatus.OK, "plan": StageStatus.RECOVERED_WITH_HEURISTIC}
    assert state["stage_status"] == {"gate": StageStatus.OK}
    assert notes[0]["node"] == "plan" and state["stage_notes"] == []
    emit(state, "plan_complete", {})


def test_store_round_trip_and_artifact_cap():
    store = InMemorySessionStore()
    ctx = SituationContext(title="Constitution Park boardwalk vote", entities=["Constitution Park"])
    store.put_situation_context("s1", ctx)
    for i in range(MAX_SESSION_ARTIFACTS + 2):
        store.add_artifact("s1", Artifact(title=f"doc {i}", text="text"))

    assert store.get_situation_context("s1") == ctx
    titles = [a.title for a in store.get_session_artifacts("s1")]
    assert titles == [f"doc {i}" for i in range(2, MAX_SESSION_ARTIFACTS + 2)]
    assert store.get_situation_context("other") is None
    assert store.clear_session("s1") is True
    assert store.clear_session("s1") is False


def test_store_expires_idle_sessions():
    store = InMemorySessionStore(ttl_secs=60)
    store.put_situation_context("s1", SituationContext(title="x", entities=["x"]))
    store._sessions["s1"]["ts"] = time.time() - 120
    assert store.get_situation_context("s1") is None
