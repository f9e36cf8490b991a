"""Shared test fixtures."""

import math
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from media_ingest.adapters.memory_session_store import InMemorySessionStore
from media_ingest.config import Settings
from media_ingest.containers import AppContainer
from media_ingest.domain.sessions import IngestionSession, SessionStatus
from media_ingest.services.analysis import AnalysisClient, AnalysisDispatcher
from media_ingest.services.pipeline import IngestionPipeline
from media_ingest.services.playback import PlaybackResolver
from media_ingest.services.segmentation import (
    SegmentationEngine,
    Transcoder,
    TranscoderError,
)
from media_ingest.services.session_store import SessionStoreAdapter
from media_ingest.services.storage import ObjectStore
from media_ingest.services.uploads import UploadCoordinator, upload_key


class FakeObjectStore(ObjectStore):
    """Object store keeping objects in a dict."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.upload_order: list[str] = []
        self.upload_delays: dict[str, float] = {}
        self.fail_uploads = False
        self._counter = 0
        self._lock = threading.Lock()

    def create_upload_url(self, key: str, expires_in: int) -> str:
        return f"https://storage.test/upload/{key}?token={self._next_token()}"

    def create_download_url(self, key: str, expires_in: int) -> str:
        return (
            f"https://storage.test/object/{key}"
            f"?token={self._next_token()}&expires={expires_in}"
        )

    def upload_file(self, key: str, local_path: Path) -> None:
        if self.fail_uploads:
            raise RuntimeError("storage unavailable")
        time.sleep(self.upload_delays.get(key, 0))
        with self._lock:
            self.objects[key] = local_path.read_bytes()
            self.upload_order.append(key)

    def download_file(self, key: str, local_path: Path) -> None:
        if key not in self.objects:
            raise RuntimeError(f"object {key} not found")
        local_path.write_bytes(self.objects[key])

    def _next_token(self) -> int:
        with self._lock:
            self._counter += 1
            return self._counter


@dataclass
class FakeTranscoder(Transcoder):
    """Transcoder writing placeholder segments sized by the declared duration."""

    duration: float = 250.0
    fail: bool = False
    file_names: list[str] | None = None
    hold_seconds: float = 0.0
    durations: list[float] = field(default_factory=list)
    sources: list[bytes] = field(default_factory=list)
    active: int = 0
    max_active: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def probe_duration(
        self, source: Path, stop: threading.Event | None = None
    ) -> float:
        self.sources.append(source.read_bytes())
        return self.duration

    def split(
        self,
        source: Path,
        max_segment_seconds: float,
        output_dir: Path,
        stop: threading.Event | None = None,
    ) -> list[Path]:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if stop is None:
                time.sleep(self.hold_seconds)
            elif stop.wait(self.hold_seconds):
                raise TranscoderError("ffmpeg was cancelled")
            if self.fail:
                raise TranscoderError("ffmpeg exited with 1: moov atom not found")
            count = math.ceil(self.duration / max_segment_seconds)
            self.durations = [
                min(max_segment_seconds, self.duration - index * max_segment_seconds)
                for index in range(count)
            ]
            names = self.file_names or [f"segment_{i:04d}.mp4" for i in range(count)]
            paths = []
            for name in names:
                path = output_dir / name
                path.write_bytes(name.encode())
                paths.append(path)
            # Filesystem enumeration order is not index order.
            return list(reversed(paths))
        finally:
            with self._lock:
                self.active -= 1


@dataclass
class FakeAnalysisClient(AnalysisClient):
    """Analysis client returning queued outcomes in order."""

    outcomes: list[object] = field(default_factory=list)
    calls: list[list[str]] = field(default_factory=list)
    default: dict[str, object] = field(
        default_factory=lambda: {"summary": "two speakers", "labels": ["meeting"]}
    )

    async def analyze_batch(self, references: list[str]) -> dict[str, object]:
        self.calls.append(list(references))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome  # type: ignore[return-value]


def upload_all_chunks(
    coordinator: UploadCoordinator,
    object_store: FakeObjectStore,
    session_id: str,
    payloads: list[bytes],
) -> None:
    """Store every chunk and report it complete."""
    session = coordinator.sessions.get(session_id)
    for index, payload in enumerate(payloads):
        object_store.objects[upload_key(session, index)] = payload
        coordinator.record_chunk_complete(session_id, index, "completed")


def processing_session(
    coordinator: UploadCoordinator,
    object_store: FakeObjectStore,
    chunk_count: int | None = None,
) -> IngestionSession:
    """Create a fully uploaded session and move it to processing."""
    ticket = coordinator.initiate("talk.mp4", 3000, chunk_count)
    payloads = [f"part-{index}|".encode() for index in range(ticket.total_chunks)]
    upload_all_chunks(coordinator, object_store, ticket.session_id, payloads)
    return coordinator.sessions.transition(
        ticket.session_id, SessionStatus.PROCESSING
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="header.payload.signature",
        analysis_base_url="https://analysis.test",
        analysis_retry_backoff_seconds=0,
    )


@pytest.fixture
def sessions() -> SessionStoreAdapter:
    return SessionStoreAdapter(store=InMemorySessionStore(), ttl_seconds=7200)


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def analysis_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def coordinator(
    sessions: SessionStoreAdapter, object_store: FakeObjectStore
) -> UploadCoordinator:
    return UploadCoordinator(sessions=sessions, object_store=object_store)


@pytest.fixture
def engine(
    sessions: SessionStoreAdapter,
    object_store: FakeObjectStore,
    transcoder: FakeTranscoder,
    tmp_path: Path,
) -> SegmentationEngine:
    return SegmentationEngine(
        sessions=sessions,
        object_store=object_store,
        transcoder=transcoder,
        max_segment_seconds=120,
        work_dir=tmp_path,
    )


@pytest.fixture
def dispatcher(
    sessions: SessionStoreAdapter,
    object_store: FakeObjectStore,
    analysis_client: FakeAnalysisClient,
) -> AnalysisDispatcher:
    return AnalysisDispatcher(
        sessions=sessions,
        object_store=object_store,
        client=analysis_client,
        retry_backoff_seconds=0,
    )


@pytest.fixture
def resolver(
    sessions: SessionStoreAdapter, object_store: FakeObjectStore
) -> PlaybackResolver:
    return PlaybackResolver(sessions=sessions, object_store=object_store)


@pytest.fixture
def pipeline(
    sessions: SessionStoreAdapter,
    engine: SegmentationEngine,
    dispatcher: AnalysisDispatcher,
) -> IngestionPipeline:
    return IngestionPipeline(sessions=sessions, engine=engine, dispatcher=dispatcher)


@pytest.fixture
def container(  # noqa: PLR0913
    settings: Settings,
    sessions: SessionStoreAdapter,
    coordinator: UploadCoordinator,
    engine: SegmentationEngine,
    dispatcher: AnalysisDispatcher,
    resolver: PlaybackResolver,
    pipeline: IngestionPipeline,
) -> AppContainer:
    async def close_resources() -> None:
        await pipeline.shutdown()

    return AppContainer(
        settings=settings,
        sessions=sessions,
        upload_coordinator=coordinator,
        segmentation_engine=engine,
        analysis_dispatcher=dispatcher,
        playback_resolver=resolver,
        pipeline=pipeline,
        close_resources=close_resources,
    )
