"""Segmentation of a fully uploaded source into independently playable units."""

import asyncio
import logging
import math
import re
import shutil
import sys
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from media_ingest.domain import storage_keys
from media_ingest.domain.errors import ExternalFailure, NotReady
from media_ingest.domain.sessions import (
    IngestionSession,
    SessionStatus,
    UploadStrategy,
)
from media_ingest.services.session_store import SessionStoreAdapter
from media_ingest.services.storage import ObjectStore
from media_ingest.services.uploads import upload_key

logger = logging.getLogger(__name__)

_TRAILING_INDEX = re.compile(r"(\d+)$")


class TranscoderError(RuntimeError):
    """Raised when the transcoder exits non-zero or produces unusable output."""


class SegmentationCancelled(RuntimeError):
    """Raised inside the worker thread once the owning task is cancelled."""


class Transcoder(Protocol):
    """Splits a container file into time-bounded segments without re-encoding.

    Implementations stop early and raise ``TranscoderError`` once ``stop`` is
    set.
    """

    def probe_duration(
        self, source: Path, stop: threading.Event | None = None
    ) -> float:
        """Return the media duration in seconds."""

    def split(
        self,
        source: Path,
        max_segment_seconds: float,
        output_dir: Path,
        stop: threading.Event | None = None,
    ) -> list[Path]:
        """Write segments into ``output_dir`` and return their paths."""


@dataclass
class SegmentationEngine:
    """Turns one uploaded source into an ordered list of stored segments.

    Transcoding runs on a fixed-size thread pool so that a host never
    segments more than ``max_concurrent_segmentations`` sources at once.
    Uploads of finished segments run in parallel, but the published
    reference list always follows segment index order.
    """

    sessions: SessionStoreAdapter
    object_store: ObjectStore
    transcoder: Transcoder
    max_segment_seconds: float = 120.0
    max_concurrent_segmentations: int = 2
    upload_concurrency: int = 4
    work_dir: Path | None = None
    executor: ThreadPoolExecutor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent_segmentations,
            thread_name_prefix="segmentation",
        )

    async def segment(self, session_id: str) -> list[str]:
        """Segment a session in ``processing`` and move it to ``chunked``."""
        session = self.sessions.get(session_id)
        if session.status is not SessionStatus.PROCESSING:
            raise NotReady(
                f"Session {session_id} must be processing to segment, "
                f"not {session.status}"
            )

        temp_dir = Path(
            tempfile.mkdtemp(prefix=f"segment_{session_id}_", dir=self.work_dir)
        )
        stop = threading.Event()
        job = self.executor.submit(self._materialize_and_split, session, temp_dir, stop)
        work = asyncio.wrap_future(job)
        try:
            segment_files = await asyncio.shield(work)
            refs = await self._upload_segments(session_id, segment_files)
        except asyncio.CancelledError:
            # A queued job never starts; a running one must release its slot
            # and its files before the temp dir goes away.
            stop.set()
            if not job.cancel():
                await _settle(work)
            self.sessions.mark_failed(session_id, "Segmentation was cancelled")
            raise
        except Exception as exc:
            logger.exception("Segmentation failed", extra={"session_id": session_id})
            message = f"Segmentation failed: {exc}"
            self.sessions.mark_failed(session_id, message)
            raise ExternalFailure(message) from exc
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        self.sessions.transition(
            session_id,
            SessionStatus.CHUNKED,
            segment_refs=refs,
            processed_at=datetime.now(tz=UTC),
        )
        logger.info("Session %s produced %s segments", session_id, len(refs))
        return refs

    def close(self) -> None:
        """Stop the worker pool once running segmentations finish."""
        self.executor.shutdown(wait=True)

    def _materialize_and_split(
        self, session: IngestionSession, temp_dir: Path, stop: threading.Event
    ) -> list[Path]:
        _raise_if_stopped(stop)
        source = temp_dir / f"source{Path(session.source_name).suffix or '.mp4'}"
        self._materialize(session, source, temp_dir, stop)

        _raise_if_stopped(stop)
        duration = self.transcoder.probe_duration(source, stop)
        if duration <= 0:
            raise TranscoderError(f"Source reports a non-positive duration: {duration}")
        logger.info(
            "Splitting %s (%.1fs) into about %s segments of at most %ss",
            session.id,
            duration,
            math.ceil(duration / self.max_segment_seconds),
            self.max_segment_seconds,
        )

        output_dir = temp_dir / "segments"
        output_dir.mkdir()
        _raise_if_stopped(stop)
        produced = self.transcoder.split(
            source, self.max_segment_seconds, output_dir, stop
        )
        if not produced:
            raise TranscoderError("Transcoder produced no segments")
        return order_segment_files(produced)

    def _materialize(
        self,
        session: IngestionSession,
        source: Path,
        temp_dir: Path,
        stop: threading.Event,
    ) -> None:
        if session.strategy is UploadStrategy.SINGLE:
            self.object_store.download_file(upload_key(session, 0), source)
            return
        # Chunks are raw byte ranges; concatenating them in index order
        # restores the original container.
        part = temp_dir / "part.bin"
        with source.open("wb") as target:
            for index in range(session.total_chunks):
                _raise_if_stopped(stop)
                self.object_store.download_file(upload_key(session, index), part)
                with part.open("rb") as handle:
                    shutil.copyfileobj(handle, target)
                part.unlink()

    async def _upload_segments(
        self, session_id: str, segment_files: list[Path]
    ) -> list[str]:
        loop = asyncio.get_running_loop()
        limiter = asyncio.Semaphore(self.upload_concurrency)
        in_flight: list[asyncio.Future[None]] = []

        async def upload(index: int, path: Path) -> str:
            key = storage_keys.segment_key(session_id, index, path.suffix or ".mp4")
            async with limiter:
                future = loop.run_in_executor(
                    None, self.object_store.upload_file, key, path
                )
                in_flight.append(future)
                await asyncio.shield(future)
            return key

        tasks = [
            asyncio.ensure_future(upload(index, path))
            for index, path in enumerate(segment_files)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await _settle(*tasks)
            # Uploads still reading segment files must finish before cleanup.
            await _settle(*in_flight)
            raise


async def _settle(*futures: asyncio.Future[object]) -> None:
    if not futures:
        return
    await asyncio.wait(futures)
    for future in futures:
        if not future.cancelled():
            # Retrieve the outcome so it is not reported as never retrieved.
            future.exception()


def _raise_if_stopped(stop: threading.Event) -> None:
    if stop.is_set():
        raise SegmentationCancelled("Segmentation was cancelled")


def order_segment_files(paths: list[Path]) -> list[Path]:
    """Order segment files by their numeric index, then by file name."""

    def sort_key(path: Path) -> tuple[int, str]:
        match = _TRAILING_INDEX.search(path.stem)
        return (int(match.group(1)) if match else sys.maxsize, path.name)

    return sorted(paths, key=sort_key)
