"""Single-chunk transfer with abortable in-flight requests."""

import asyncio
from typing import Callable, Dict, List, Optional, Tuple

from common.logging_config import get_logger
from common.types import UploadFile
from uploader.api_client import UploadApiClient
from uploader.exceptions import ReadError, UploadCancelledError
from uploader.models import ChunkUploadResult

logger = get_logger(__name__)


def chunk_bounds(chunk_index: int, chunk_size: int, file_size: int) -> Tuple[int, int]:
    """
    Byte range ``[start, end)`` covered by a chunk.

    Args:
        chunk_index: Zero-based chunk index
        chunk_size: Nominal chunk length
        file_size: Total file size

    Returns:
        Tuple of (start, end); the last chunk may be short
    """
    start = chunk_index * chunk_size
    end = min(start + chunk_size, file_size)
    return start, end


async def read_chunk(file: UploadFile, chunk_index: int, chunk_size: int) -> bytes:
    """
    Read one chunk of a file off the event loop thread.

    Raises:
        ReadError: If the file can no longer be read
    """
    start, end = chunk_bounds(chunk_index, chunk_size, file.size)
    try:
        return await asyncio.to_thread(file.read_range, start, end)
    except OSError as e:
        raise ReadError(f"Failed to read chunk {chunk_index} of {file.name}: {e}") from e


class ChunkTransfer:
    """
    Sends chunks through the API client, one request task per chunk.

    Every request is registered under its chunk index until it settles, so
    it can be aborted individually or all at once.
    """

    def __init__(self, api: UploadApiClient):
        self._api = api
        self._in_flight: Dict[int, asyncio.Task] = {}

    @property
    def in_flight(self) -> List[int]:
        """Chunk indices with an unsettled request."""
        return sorted(self._in_flight)

    async def send(
        self,
        session_id: str,
        chunk_index: int,
        data: bytes,
        on_progress: Optional[Callable[[int, int], None]] = None
    ) -> ChunkUploadResult:
        """
        Upload one chunk.

        Args:
            session_id: Server session id
            chunk_index: Zero-based chunk index
            data: Chunk bytes
            on_progress: Called with (bytes_sent, total_bytes)

        Returns:
            Server acknowledgment

        Raises:
            UploadCancelledError: If the request was aborted
            ChunkError: If the transfer failed
        """
        request = asyncio.ensure_future(
            self._api.upload_chunk(session_id, chunk_index, data, on_progress)
        )
        self._in_flight[chunk_index] = request
        try:
            await asyncio.wait({request})
        finally:
            if self._in_flight.get(chunk_index) is request:
                del self._in_flight[chunk_index]
            if not request.done():
                request.cancel()

        if request.cancelled():
            raise UploadCancelledError(f"Chunk {chunk_index} request aborted")
        return request.result()

    def abort(self, chunk_index: int) -> bool:
        """Abort the request for one chunk, if any."""
        request = self._in_flight.pop(chunk_index, None)
        if request is None:
            return False
        request.cancel()
        return True

    def abort_all(self) -> int:
        """
        Abort every unsettled request.

        Returns:
            Number of requests aborted
        """
        requests = list(self._in_flight.values())
        self._in_flight.clear()
        for request in requests:
            request.cancel()
        if requests:
            logger.debug(f"Aborted {len(requests)} in-flight chunk request(s)")
        return len(requests)
