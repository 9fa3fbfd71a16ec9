"""Wire models for the resumable upload API and engine options."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from common.constants import (
    DEFAULT_CHUNK_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class ApiResponse(_WireModel):
    """Response envelope shared by every endpoint (code 1 = success)."""
    code: int
    msg: Optional[str] = None
    data: Any = None


class UploadSession(_WireModel):
    """Upload plan negotiated by the prepare handshake."""
    session_id: str = Field(alias='taskId')
    resumable: bool = False
    completed: bool = False
    total_chunks: Optional[int] = Field(default=None, alias='totalChunks')
    uploaded_chunks: Optional[List[int]] = Field(default=None, alias='uploadedChunks')
    chunk_size: Optional[int] = Field(default=None, alias='chunkSize')
    final_file_id: Optional[str] = Field(default=None, alias='finalFileId')
    download_url: Optional[str] = Field(default=None, alias='downloadUrl')
    uploaded_size: Optional[int] = Field(default=None, alias='uploadedSize')
    upload_progress: Optional[float] = Field(default=None, alias='uploadProgress')


class ChunkUploadResult(_WireModel):
    """Server acknowledgment for one chunk."""
    session_id: Optional[str] = Field(default=None, alias='taskId')
    chunk_index: int = Field(alias='chunkIndex')
    chunk_file_id: Optional[str] = Field(default=None, alias='chunkFileId')
    success: bool = True
    message: Optional[str] = None
    uploaded_chunks_count: Optional[int] = Field(default=None, alias='uploadedChunksCount')
    progress_percentage: Optional[float] = Field(default=None, alias='progressPercentage')


class ServerUploadTask(_WireModel):
    """Unfinished upload session as listed by the server."""
    id: str
    file_name: str = Field(alias='fileName')
    file_size: int = Field(alias='fileSize')
    total_chunks: Optional[int] = Field(default=None, alias='totalChunks')
    uploaded_chunks: Optional[int] = Field(default=None, alias='uploadedChunks')
    progress: Optional[float] = None
    status: Optional[str] = None
    status_text: Optional[str] = Field(default=None, alias='statusText')
    error_message: Optional[str] = Field(default=None, alias='errorMessage')
    resumable: bool = False
    remaining_size: Optional[int] = Field(default=None, alias='remainingSize')
    created_at: Optional[str] = Field(default=None, alias='createdAt')
    updated_at: Optional[str] = Field(default=None, alias='updatedAt')
    expires_at: Optional[str] = Field(default=None, alias='expiresAt')


ProgressCallback = Callable[[float, int, int, str, float], None]
ChunkCompleteCallback = Callable[[int, int, str, int], None]
CompleteCallback = Callable[[Dict[str, Any]], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class UploadOptions:
    """
    Per-upload callbacks and tuning.

    Attributes:
        on_progress: (percent, chunk_index, total_chunks, session_id, stage_ratio)
        on_chunk_complete: (chunk_index, total_chunks, session_id, completed_count)
        on_complete: Called once with the final result
        on_error: Called once with the error that failed the upload
        concurrency: Parallel chunk transfers
        max_retries: Retries per chunk after the first attempt
        retry_delay: Base backoff delay in seconds
    """
    on_progress: Optional[ProgressCallback] = None
    on_chunk_complete: Optional[ChunkCompleteCallback] = None
    on_complete: Optional[CompleteCallback] = None
    on_error: Optional[ErrorCallback] = None
    concurrency: int = DEFAULT_CHUNK_CONCURRENCY
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS
