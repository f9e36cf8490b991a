"""Dependency container wiring for the application."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from supabase import create_client

from media_ingest.adapters.analysis_client import HttpxAnalysisClient
from media_ingest.adapters.ffmpeg_transcoder import FfmpegTranscoder
from media_ingest.adapters.memory_session_store import InMemorySessionStore
from media_ingest.adapters.redis_session_store import RedisSessionStore
from media_ingest.adapters.supabase_object_store import SupabaseObjectStore
from media_ingest.config import Settings
from media_ingest.services.analysis import AnalysisDispatcher
from media_ingest.services.pipeline import IngestionPipeline
from media_ingest.services.playback import PlaybackResolver
from media_ingest.services.segmentation import SegmentationEngine
from media_ingest.services.session_store import SessionStore, SessionStoreAdapter
from media_ingest.services.uploads import UploadCoordinator


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    sessions: SessionStoreAdapter
    upload_coordinator: UploadCoordinator
    segmentation_engine: SegmentationEngine
    analysis_dispatcher: AnalysisDispatcher
    playback_resolver: PlaybackResolver
    pipeline: IngestionPipeline
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container.

    Without ``redis_url`` sessions live in process memory, which only suits
    a single-worker local run.
    """
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    object_store = SupabaseObjectStore.create(
        supabase_client, resolved_settings.storage_bucket
    )
    redis_store = (
        RedisSessionStore.create(resolved_settings.redis_url)
        if resolved_settings.redis_url
        else None
    )
    session_store: SessionStore = redis_store or InMemorySessionStore()
    sessions = SessionStoreAdapter(
        store=session_store, ttl_seconds=resolved_settings.session_ttl_seconds
    )
    upload_coordinator = UploadCoordinator(
        sessions=sessions,
        object_store=object_store,
        upload_url_ttl_seconds=resolved_settings.upload_url_ttl_seconds,
        max_chunk_count=resolved_settings.max_chunk_count,
    )
    transcoder = FfmpegTranscoder(
        ffmpeg_path=resolved_settings.ffmpeg_path,
        ffprobe_path=resolved_settings.ffprobe_path,
        timeout_seconds=resolved_settings.transcoder_timeout_seconds,
    )
    segmentation_engine = SegmentationEngine(
        sessions=sessions,
        object_store=object_store,
        transcoder=transcoder,
        max_segment_seconds=resolved_settings.max_segment_seconds,
        max_concurrent_segmentations=resolved_settings.max_concurrent_segmentations,
        upload_concurrency=resolved_settings.segment_upload_concurrency,
        work_dir=(
            Path(resolved_settings.segmentation_work_dir)
            if resolved_settings.segmentation_work_dir
            else None
        ),
    )
    analysis_client = HttpxAnalysisClient.create(
        base_url=resolved_settings.analysis_base_url,
        batch_path=resolved_settings.analysis_batch_path,
    )
    analysis_dispatcher = AnalysisDispatcher(
        sessions=sessions,
        object_store=object_store,
        client=analysis_client,
        reference_mode=resolved_settings.analysis_reference_mode,
        reference_url_ttl_seconds=resolved_settings.playback_url_ttl_seconds,
        max_attempts=resolved_settings.analysis_max_attempts,
        retry_backoff_seconds=resolved_settings.analysis_retry_backoff_seconds,
    )
    playback_resolver = PlaybackResolver(
        sessions=sessions,
        object_store=object_store,
        url_ttl_seconds=resolved_settings.playback_url_ttl_seconds,
        mode=resolved_settings.playback_mode,
    )
    pipeline = IngestionPipeline(
        sessions=sessions,
        engine=segmentation_engine,
        dispatcher=analysis_dispatcher,
        auto_analyze=resolved_settings.auto_analyze,
    )

    async def close_resources() -> None:
        await pipeline.shutdown()
        await asyncio.to_thread(segmentation_engine.close)
        await analysis_client.close()
        object_store.close()
        if redis_store is not None:
            redis_store.close()

    return AppContainer(
        settings=resolved_settings,
        sessions=sessions,
        upload_coordinator=upload_coordinator,
        segmentation_engine=segmentation_engine,
        analysis_dispatcher=analysis_dispatcher,
        playback_resolver=playback_resolver,
        pipeline=pipeline,
        close_resources=close_resources,
    )
