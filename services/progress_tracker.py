# services/progress_tracker.py
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Set

from state.artwork_schema import ArtworkRecord, NarrationBundle

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    IDLE = "idle"
    IDENTIFYING = "identifying"
    LOADING_CACHE = "loading_cache"
    GENERATING = "generating"
    VERIFYING = "verifying"
    READY = "ready"
    FAILED = "failed"


class SessionProgress:
    """
    Presentation state of one recognition session.
    Mutated only from the event loop that runs the session.
    """

    _UPDATABLE_FIELDS = {
        "phase", "provisional", "received_chars", "bundle",
        "confidence_level", "template", "failure_kind", "error",
    }

    def __init__(self, session_id: str, owner: Optional[str] = None):
        self.session_id = session_id
        self.owner = owner
        self.phase = SessionPhase.IDLE
        self.provisional: Optional[ArtworkRecord] = None
        self.received_chars = 0
        self.bundle: Optional[NarrationBundle] = None
        self.confidence_level: Optional[str] = None
        self.template: Optional[str] = None
        self.failure_kind: Optional[str] = None
        self.error: Optional[str] = None
        self.last_updated = datetime.now()

    def update(self, **kwargs):
        for key, value in kwargs.items():
            if key in self._UPDATABLE_FIELDS:
                setattr(self, key, value)
            else:
                logger.warning(f"Ignoring unknown progress field: {key}")
        self.last_updated = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "provisional": self.provisional.model_dump() if self.provisional else None,
            "received_chars": self.received_chars,
            "bundle": self.bundle.model_dump() if self.bundle else None,
            "confidence_level": self.confidence_level,
            "template": self.template,
            "failure_kind": self.failure_kind,
            "error": self.error,
            "last_updated": self.last_updated.isoformat(),
        }


class ProgressTracker:
    """
    Owns session progress and the background tasks each session spawns.
    Starting a session cancels the background work of the previous
    session of the same owner.
    """

    TTL = timedelta(hours=1)

    def __init__(self):
        self._sessions: Dict[str, SessionProgress] = {}
        self._handles: Dict[str, Set[asyncio.Task]] = {}
        self._active_by_owner: Dict[str, str] = {}

    def start_session(self, session_id: str, owner: Optional[str] = None) -> SessionProgress:
        self._cleanup()

        if owner is not None:
            previous = self._active_by_owner.get(owner)
            if previous and previous != session_id:
                cancelled = self.cancel_session_tasks(previous)
                if cancelled:
                    logger.info(f"🛑 Session {previous} superseded, cancelled {cancelled} background task(s)")
            self._active_by_owner[owner] = session_id

        progress = SessionProgress(session_id, owner)
        self._sessions[session_id] = progress
        return progress

    def get(self, session_id: str) -> Optional[SessionProgress]:
        return self._sessions.get(session_id)

    def get_progress(self, session_id: str) -> Optional[Dict[str, Any]]:
        progress = self._sessions.get(session_id)
        if progress:
            return progress.to_dict()
        return None

    def update_session(self, session_id: str, **kwargs):
        progress = self._sessions.get(session_id)
        if progress:
            progress.update(**kwargs)

    def register_task(self, session_id: str, task: asyncio.Task) -> asyncio.Task:
        handles = self._handles.setdefault(session_id, set())
        handles.add(task)
        task.add_done_callback(lambda t: self._discard(session_id, t))
        return task

    def _discard(self, session_id: str, task: asyncio.Task):
        handles = self._handles.get(session_id)
        if handles is None:
            return
        handles.discard(task)
        if not handles:
            self._handles.pop(session_id, None)

    def pending_tasks(self, session_id: str) -> Set[asyncio.Task]:
        return set(self._handles.get(session_id, ()))

    async def wait_session_tasks(self, session_id: str) -> None:
        tasks = self.pending_tasks(session_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every outstanding background task."""
        for session_id in list(self._handles):
            self.cancel_session_tasks(session_id)

    def cancel_session_tasks(self, session_id: str) -> int:
        handles = self._handles.pop(session_id, set())
        count = 0
        for task in handles:
            if not task.done():
                task.cancel()
                count += 1
        return count

    def _cleanup(self):
        now = datetime.now()
        expired = [
            sid for sid, prog in self._sessions.items()
            if now - prog.last_updated > self.TTL and sid not in self._handles
        ]
        for sid in expired:
            self._sessions.pop(sid, None)
