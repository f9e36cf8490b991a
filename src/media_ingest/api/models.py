"""Pydantic models for upload API payloads."""

from pydantic import BaseModel, ConfigDict, Field


class InitiateUploadRequest(BaseModel):
    """Body of an upload initiation."""

    model_config = ConfigDict(populate_by_name=True)

    file_name: str | None = Field(default=None, alias="fileName")
    file_size: int | None = Field(default=None, alias="fileSize")
    chunk_count: int | None = Field(default=None, alias="chunkCount")


class ChunkProgressRequest(BaseModel):
    """Client report for one chunk upload."""

    model_config = ConfigDict(populate_by_name=True)

    video_id: str | None = Field(default=None, alias="videoId")
    chunk_index: int | None = Field(default=None, alias="chunkIndex")
    status: str | None = None


class SessionRequest(BaseModel):
    """Body naming a session to act on."""

    model_config = ConfigDict(populate_by_name=True)

    video_id: str | None = Field(default=None, alias="videoId")


class CredentialsRequest(BaseModel):
    """Optional explicit chunk list for reissued credentials."""

    model_config = ConfigDict(populate_by_name=True)

    chunk_indices: list[int] | None = Field(default=None, alias="chunkIndices")
