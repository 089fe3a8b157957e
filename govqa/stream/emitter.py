# stream/emitter.py
from __future__ import annotations
import time
from typing import Any, Callable, Dict, List, Optional

from govqa.core.logging import get_logger
from govqa.schemas.events import TelemetryEvent

logger = get_logger("govqa.stream.emitter")


class Emitter:
    def __init__(self, request_id: str, session_id: Optional[str], send: Optional[Callable[[Dict[str, Any]], None]] = None):
        self.request_id, self.session_id = request_id, session_id
        self.send = send or (lambda _ev: None)

    def emit(self, type_: str, data: Dict[str, Any]) -> None:
        ev = TelemetryEvent(
            type=type_,
            request_id=self.request_id,
            session_id=self.session_id,
            ts_ms=int(time.time() * 1000),
            data=data,
        )
        logger.info(
            "TELEMETRY_EMIT type=%s request_id=%s session_id=%s keys=%s",
            type_,
            self.request_id,
            self.session_id,
            ",".join(sorted((data or {}).keys())),
        )
        self.send(ev.model_dump())


class EventCollector:
    """Telemetry sink that keeps every event in memory."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def __call__(self, ev: Dict[str, Any]) -> None:
        self.events.append(ev)

    def types(self) -> List[str]:
        return [e["type"] for e in self.events]
