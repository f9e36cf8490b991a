"""Background execution of segmentation and analysis off the request path."""

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field

from media_ingest.domain.errors import IngestionError, NotReady
from media_ingest.domain.sessions import (
    IngestionSession,
    SessionStatus,
    ensure_transition,
)
from media_ingest.services.analysis import AnalysisDispatcher
from media_ingest.services.segmentation import SegmentationEngine
from media_ingest.services.session_store import SessionStoreAdapter

logger = logging.getLogger(__name__)


@dataclass
class IngestionPipeline:
    """Schedules one cancellable background step per session."""

    sessions: SessionStoreAdapter
    engine: SegmentationEngine
    dispatcher: AnalysisDispatcher
    auto_analyze: bool = True
    _tasks: dict[str, asyncio.Task[None]] = field(default_factory=dict, init=False)

    async def start_processing(self, session_id: str) -> IngestionSession:
        """Move a fully uploaded session to ``processing`` and segment it."""
        self._ensure_idle(session_id)
        session = self.sessions.get(session_id)
        if not session.all_chunks_complete:
            raise NotReady(
                f"Not all chunks are uploaded: "
                f"{len(session.completed_chunk_indices)}/{session.total_chunks}"
            )
        session = self.sessions.transition(session_id, SessionStatus.PROCESSING)
        self._schedule(session_id, self._process(session_id))
        return session

    async def start_analysis(self, session_id: str) -> IngestionSession:
        """Dispatch a segmented session for analysis in the background."""
        self._ensure_idle(session_id)
        session = self.sessions.get(session_id)
        ensure_transition(session, SessionStatus.ANALYZING)
        self._schedule(session_id, self.dispatcher.dispatch(session_id))
        return session

    def is_running(self, session_id: str) -> bool:
        """Return whether a background step is active for the session."""
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def cancel(self, session_id: str) -> bool:
        """Cancel the active step; the session is recorded as failed."""
        task = self._tasks.get(session_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.wait({task})
        logger.info("Cancelled background step for %s", session_id)
        return True

    async def wait(self, session_id: str) -> None:
        """Wait for the active step, if any, to finish."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.wait({task})

    async def shutdown(self) -> None:
        """Cancel every active step and wait for them to unwind."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

    async def _process(self, session_id: str) -> None:
        await self.engine.segment(session_id)
        if self.auto_analyze:
            await self.dispatcher.dispatch(session_id)

    def _ensure_idle(self, session_id: str) -> None:
        if self.is_running(session_id):
            raise NotReady(f"Session {session_id} already has a step in progress")

    def _schedule(
        self, session_id: str, step: Coroutine[object, object, object]
    ) -> None:
        task = asyncio.create_task(
            self._run(session_id, step), name=f"ingest-{session_id}"
        )
        self._tasks[session_id] = task

        def forget(done: asyncio.Task[None]) -> None:
            if self._tasks.get(session_id) is done:
                del self._tasks[session_id]

        task.add_done_callback(forget)

    async def _run(
        self, session_id: str, step: Coroutine[object, object, object]
    ) -> None:
        try:
            await step
        except IngestionError as exc:
            # Failures are already persisted on the session record.
            logger.warning("Step for %s stopped: %s", session_id, exc.message)
        except Exception:
            logger.exception(
                "Unexpected error in background step", extra={"session_id": session_id}
            )
            self.sessions.mark_failed(session_id, "Unexpected internal error")
