"""Upload, processing and playback endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request

from media_ingest.api.models import (
    ChunkProgressRequest,
    CredentialsRequest,
    InitiateUploadRequest,
    SessionRequest,
)
from media_ingest.domain.errors import InvalidRequest

if TYPE_CHECKING:
    from media_ingest.containers import AppContainer
    from media_ingest.domain.playback import PlaybackResult
    from media_ingest.domain.sessions import IngestionSession
    from media_ingest.domain.uploads import UploadProgress, WriteCredential

router = APIRouter(prefix="/api/upload", tags=["upload"])


def _container(request: Request) -> AppContainer:
    return request.app.state.container


@router.post("/initiate")
async def initiate_upload(
    body: InitiateUploadRequest, request: Request
) -> dict[str, object]:
    """Create a session and return write credentials."""
    ticket = _container(request).upload_coordinator.initiate(
        source_name=body.file_name,
        source_size_bytes=body.file_size,
        chunk_count=body.chunk_count,
    )
    return {
        "success": True,
        "videoId": ticket.session_id,
        "strategy": str(ticket.strategy),
        "totalChunks": ticket.total_chunks,
        "uploadUrls": [_credential(item) for item in ticket.credentials],
    }


@router.post("/progress")
async def track_progress(
    body: ChunkProgressRequest, request: Request
) -> dict[str, object]:
    """Record a chunk upload result reported by the client."""
    if not body.video_id or body.chunk_index is None or not body.status:
        raise InvalidRequest("videoId, chunkIndex, and status are required")
    progress = _container(request).upload_coordinator.record_chunk_complete(
        body.video_id, body.chunk_index, body.status
    )
    return {"success": True, **_progress(progress)}


@router.get("/status/{video_id}")
async def upload_status(video_id: str, request: Request) -> dict[str, object]:
    """Return the session stage and the chunks still to upload."""
    container = _container(request)
    progress = container.upload_coordinator.status(video_id)
    return {
        "success": True,
        **_progress(progress),
        "running": container.pipeline.is_running(video_id),
    }


@router.post("/credentials/{video_id}")
async def reissue_credentials(
    video_id: str, request: Request, body: CredentialsRequest | None = None
) -> dict[str, object]:
    """Issue fresh write credentials to resume an interrupted upload."""
    credentials = _container(request).upload_coordinator.reissue_credentials(
        video_id, body.chunk_indices if body else None
    )
    return {
        "success": True,
        "videoId": video_id,
        "uploadUrls": [_credential(item) for item in credentials],
    }


@router.post("/process", status_code=202)
async def process_upload(body: SessionRequest, request: Request) -> dict[str, object]:
    """Start segmentation, followed by analysis when auto analysis is on."""
    session = await _container(request).pipeline.start_processing(
        _require_video_id(body)
    )
    return {"success": True, **_session(session)}


@router.post("/analyze", status_code=202)
async def analyze_upload(body: SessionRequest, request: Request) -> dict[str, object]:
    """Start analysis of an already segmented session."""
    session = await _container(request).pipeline.start_analysis(
        _require_video_id(body)
    )
    return {"success": True, **_session(session)}


@router.post("/cancel/{video_id}")
async def cancel_processing(video_id: str, request: Request) -> dict[str, object]:
    """Cancel the running segmentation or analysis step."""
    container = _container(request)
    cancelled = await container.pipeline.cancel(video_id)
    session = container.sessions.get(video_id)
    return {"success": True, "cancelled": cancelled, **_session(session)}


@router.get("/chunks/{video_id}")
async def segment_urls(video_id: str, request: Request) -> dict[str, object]:
    """Return signed URLs for every produced segment."""
    result = _container(request).playback_resolver.resolve_segments(video_id)
    return {"success": True, **_playback(result)}


@router.get("/playback/{video_id}")
async def playback(video_id: str, request: Request) -> dict[str, object]:
    """Return playback descriptors for segments or the original upload."""
    result = _container(request).playback_resolver.resolve_playback(video_id)
    return {"success": True, **_playback(result)}


def _require_video_id(body: SessionRequest) -> str:
    if not body.video_id:
        raise InvalidRequest("videoId is required")
    return body.video_id


def _credential(credential: WriteCredential) -> dict[str, object]:
    return {
        "chunkIndex": credential.chunk_index,
        "uploadUrl": credential.upload_url,
        "storageKey": credential.storage_key,
        "expiresAt": credential.expires_at.isoformat(),
    }


def _progress(progress: UploadProgress) -> dict[str, object]:
    return {
        "videoId": progress.session_id,
        "status": str(progress.status),
        "completedChunks": progress.completed_chunk_indices,
        "remainingChunks": progress.remaining_chunk_indices,
        "totalChunks": progress.total_chunks,
        "progress": progress.progress,
        "error": progress.last_error,
    }


def _session(session: IngestionSession) -> dict[str, object]:
    return {
        "videoId": session.id,
        "status": str(session.status),
        "segmentCount": len(session.segment_refs or []),
        "analysisResults": session.analysis_result,
        "error": session.last_error,
    }


def _playback(result: PlaybackResult) -> dict[str, object]:
    return {
        "videoId": result.session_id,
        "segmented": result.segmented,
        "items": [
            {
                "index": item.index,
                "role": str(item.role),
                "storageKey": item.storage_key,
                "url": item.url,
                "expiresAt": item.expires_at.isoformat(),
            }
            for item in result.descriptors
        ],
    }
