"""Async HTTP client for the resumable upload API."""

import io
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from common.constants import RESPONSE_SUCCESS_CODE
from common.logging_config import get_logger
from uploader.config import Config
from uploader.exceptions import (
    CancelError,
    ChunkError,
    CompleteError,
    PrepareError,
    ServerTaskError,
    UploadError,
)
from uploader.models import ApiResponse, ChunkUploadResult, ServerUploadTask, UploadSession

logger = get_logger(__name__)

ByteProgressCallback = Callable[[int, int], None]


class ChunkReader(io.BytesIO):
    """
    Chunk bytes handed to httpx as a multipart file field.

    httpx pulls file fields in fixed-size reads; every read reports
    (bytes_read, chunk_size) to ``on_progress``.
    """

    def __init__(self, data: bytes, on_progress: Optional[ByteProgressCallback] = None):
        super().__init__(data)
        self._total = len(data)
        self._on_progress = on_progress

    def read(self, size: Optional[int] = -1) -> bytes:
        piece = super().read(size)
        if piece and self._on_progress:
            self._on_progress(self.tell(), self._total)
        return piece


class UploadApiClient:
    """HTTP client for the prepare/chunk/complete/cancel upload protocol."""

    STATUS_MESSAGES = {
        400: 'Bad request',
        401: 'Not authenticated',
        403: 'Access forbidden',
        404: 'Not found',
        413: 'Chunk too large',
        500: 'Server error',
        502: 'Bad gateway',
        503: 'Service unavailable',
        507: 'Insufficient storage',
    }

    def __init__(self, config: Config):
        """
        Initialize upload API client.

        Args:
            config: Configuration instance
        """
        self.config = config
        self.prefix = config.get_api_prefix()
        self.session = httpx.AsyncClient(
            base_url=config.get_base_url(),
            timeout=config.get_timeout()
        )
        logger.info(f"Initialized UploadApiClient [base_url={config.get_base_url()}{self.prefix}]")

    async def __aenter__(self) -> 'UploadApiClient':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP session."""
        await self.session.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {'X-Request-ID': str(uuid.uuid4())}
        api_key = self.config.get_api_key()
        if api_key:
            headers['Authorization'] = f'Bearer {api_key}'
        return headers

    def _format_error(self, response: httpx.Response) -> str:
        """
        Map an HTTP error response to a readable message.

        Args:
            response: HTTP response object

        Returns:
            Server message when the body is an envelope, else a status text
        """
        try:
            message = response.json().get('msg')
        except (ValueError, AttributeError):
            message = None

        if message:
            return message
        return self.STATUS_MESSAGES.get(response.status_code, f'HTTP {response.status_code}')

    async def _call(
        self,
        method: str,
        endpoint: str,
        action: str,
        error_factory: Callable[[str], UploadError],
        **kwargs
    ) -> Any:
        """
        Send a request and unwrap the {code, msg, data} envelope.

        Args:
            method: HTTP method
            endpoint: Path below the API prefix
            action: Human readable operation name used in messages
            error_factory: Builds the exception raised on failure
            **kwargs: Passed to httpx

        Returns:
            The envelope's ``data`` field

        Raises:
            UploadError: Subclass produced by error_factory
        """
        headers = self._headers()
        headers.update(kwargs.pop('headers', {}))
        url = f"{self.prefix}{endpoint}"

        logger.debug(f"Making request: {method} {url} [request_id={headers['X-Request-ID']}]")

        try:
            response = await self.session.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{action} timed out: {method} {url} [request_id={headers['X-Request-ID']}]")
            raise error_factory(f"{action} failed: request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"{action} network error: {method} {url} error={type(e).__name__}")
            raise error_factory(f"{action} failed: {e}") from e

        logger.debug(f"Response received: {method} {url} status={response.status_code}")

        if response.status_code >= 400:
            raise error_factory(f"{action} failed: {self._format_error(response)}")

        try:
            envelope = ApiResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise error_factory(f"{action} failed: malformed response") from e

        if envelope.code != RESPONSE_SUCCESS_CODE:
            raise error_factory(envelope.msg or f"{action} failed")

        return envelope.data

    async def prepare(self, file_name: str, file_size: int, file_hash: str) -> UploadSession:
        """
        Negotiate an upload session for a file digest.

        Args:
            file_name: Display name of the file
            file_size: Size in bytes
            file_hash: Hex content digest

        Returns:
            UploadSession describing what is already on the server
        """
        data = await self._call(
            'POST', '/prepare', 'Prepare upload', PrepareError,
            params={'fileName': file_name, 'fileSize': file_size, 'fileHash': file_hash}
        )
        try:
            return UploadSession.model_validate(data)
        except ValidationError as e:
            raise PrepareError(f"Prepare upload failed: unexpected session payload ({e.error_count()} errors)") from e

    async def upload_chunk(
        self,
        session_id: str,
        chunk_index: int,
        data: bytes,
        on_progress: Optional[ByteProgressCallback] = None
    ) -> ChunkUploadResult:
        """
        Upload one chunk as multipart/form-data.

        Args:
            session_id: Server session id from prepare
            chunk_index: Zero-based chunk index
            data: Chunk bytes
            on_progress: Called with (bytes_sent, chunk_size) as httpx reads the chunk

        Returns:
            ChunkUploadResult acknowledgment

        Raises:
            ChunkError: On transport failure or rejected chunk
        """
        def chunk_error(message: str) -> ChunkError:
            return ChunkError(message, chunk_index)

        files = {'chunk': (f'chunk_{chunk_index}', ChunkReader(data, on_progress), 'application/octet-stream')}
        payload = await self._call(
            'POST', '/chunk', f'Chunk {chunk_index} upload', chunk_error,
            data={'taskId': session_id, 'chunkIndex': str(chunk_index)},
            files=files
        )
        try:
            result = ChunkUploadResult.model_validate(payload)
        except ValidationError as e:
            raise ChunkError(f"Chunk {chunk_index} upload failed: malformed acknowledgment", chunk_index) from e

        if not result.success:
            raise ChunkError(result.message or f"Chunk {chunk_index} upload failed", chunk_index)
        return result

    async def complete(self, session_id: str) -> Dict[str, Any]:
        """Ask the server to assemble the uploaded chunks."""
        data = await self._call(
            'POST', '/complete', 'Complete upload', CompleteError,
            params={'taskId': session_id}
        )
        return data if isinstance(data, dict) else {'result': data}

    async def cancel(self, session_id: str) -> None:
        """Ask the server to discard a prepared but incomplete session."""
        await self._call('DELETE', f'/cancel/{session_id}', 'Cancel upload', CancelError)
        logger.info(f"Server session discarded [session_id={session_id}]")

    async def list_tasks(self) -> List[ServerUploadTask]:
        """List the caller's unfinished upload sessions."""
        data = await self._call('GET', '/tasks', 'List upload tasks', ServerTaskError)
        try:
            return [ServerUploadTask.model_validate(item) for item in data or []]
        except ValidationError as e:
            raise ServerTaskError("List upload tasks failed: malformed task list") from e

    async def resume(self, session_id: str) -> UploadSession:
        """Fetch the current plan of an existing session."""
        data = await self._call('POST', f'/resume/{session_id}', 'Resume upload task', ServerTaskError)
        try:
            return UploadSession.model_validate(data)
        except ValidationError as e:
            raise ServerTaskError("Resume upload task failed: unexpected session payload") from e

    async def delete_tasks(self, session_ids: List[str]) -> None:
        """Delete several server-side sessions at once."""
        await self._call(
            'DELETE', '/tasks', 'Delete upload tasks', ServerTaskError,
            params={'taskIds': ','.join(session_ids)}
        )
        logger.info(f"Deleted {len(session_ids)} server session(s)")
