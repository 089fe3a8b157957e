# graph/stage_log.py
from __future__ import annotations
import time
from typing import Any, Dict, List

from govqa.core.constants import MAX_STAGE_NOTES
from govqa.schemas.answer import StageStatus


def push_note(
    state: Dict[str, Any],
    node: str,
    summary: str,
    extra: Dict[str, Any] | None = None,
) -> List[Dict[str, Any]]:
    notes = list(state.get("stage_notes") or [])
    notes.append(
        {
            "ts_ms": int(time.time() * 1000),
            "node": node,
            "summary": summary,
            "extra": extra or {},
        }
    )
    return notes[-MAX_STAGE_NOTES:]


def set_status(state: Dict[str, Any], node: str, status: StageStatus) -> Dict[str, StageStatus]:
    statuses = dict(state.get("stage_status") or {})
    statuses[node] = status
    return statuses


def emit(state: Dict[str, Any], type_: str, data: Dict[str, Any]) -> None:
    em = state.get("emitter")
    if em is not None:
        em.emit(type_, data)
