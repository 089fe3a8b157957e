# session/store.py
from __future__ import annotations
import time
from typing import Any, Dict, List, Optional, Protocol

from govqa.schemas.situation import Artifact, SituationContext

TTL_SECS = 60 * 30
MAX_SESSION_ARTIFACTS = 3


class SessionStore(Protocol):
    def get_situation_context(self, session_id: str) -> Optional[SituationContext]:
        ...

    def get_session_artifacts(self, session_id: str) -> List[Artifact]:
        ...


class InMemorySessionStore:
    """Process-local session store. The pipeline only reads from it; callers write."""

    def __init__(self, ttl_secs: int = TTL_SECS):
        self.ttl_secs = ttl_secs
        self._sessions: Dict[str, Dict[str, Any]] = {}

    def _session(self, session_id: str) -> Dict[str, Any]:
        s = self._sessions.get(session_id) or {"situation": None, "artifacts": [], "ts": time.time()}
        s["ts"] = time.time()
        self._sessions[session_id] = s
        return s

    def get_situation_context(self, session_id: str) -> Optional[SituationContext]:
        self.cleanup()
        s = self._sessions.get(session_id)
        return s["situation"] if s else None

    def get_session_artifacts(self, session_id: str) -> List[Artifact]:
        self.cleanup()
        s = self._sessions.get(session_id)
        return list(s["artifacts"]) if s else []

    def put_situation_context(self, session_id: str, ctx: Optional[SituationContext]) -> None:
        self._session(session_id)["situation"] = ctx

    def add_artifact(self, session_id: str, artifact: Artifact) -> None:
        s = self._session(session_id)
        s["artifacts"] = (s["artifacts"] + [artifact])[-MAX_SESSION_ARTIFACTS:]

    def cleanup(self) -> None:
        now = time.time()
        for k in list(self._sessions.keys()):
            if now - self._sessions[k].get("ts", now) > self.ttl_secs:
                self._sessions.pop(k, None)

    def clear_session(self, session_id: str) -> bool:
        existed = session_id in self._sessions
        self._sessions.pop(session_id, None)
        return existed
