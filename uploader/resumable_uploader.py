"""Resumable upload engine: hash, prepare, concurrent chunk transfer, complete."""

import asyncio
import hashlib
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from common.constants import CHUNK_SIZE_BYTES, HASH_BLOCK_SIZE_BYTES
from common.logging_config import get_logger
from common.types import UploadFile
from uploader.api_client import UploadApiClient
from uploader.chunk_transfer import ChunkTransfer, read_chunk
from uploader.exceptions import ChunkError, UploadCancelledError, UploadError
from uploader.hashing import compute_file_hash_async
from uploader.models import UploadOptions, UploadSession

logger = get_logger(__name__)

# An in-flight chunk counts for at most half a unit until it is acknowledged.
IN_FLIGHT_CHUNK_WEIGHT = 0.5


@dataclass
class _TransferRun:
    """Shared state of the workers uploading one file's missing chunks."""
    session_id: str
    total_chunks: int
    chunk_size: int
    queue: Deque[int]
    completed: int
    aborted: bool = False
    error: Optional[UploadError] = None
    last_percent: float = 0.0
    abort_event: asyncio.Event = field(default_factory=asyncio.Event)


class ResumableUploader:
    """
    Uploads one file, resuming from the chunks the server already holds.

    Chunks are sent by a fixed pool of workers pulling from a shared list.
    A chunk is retried with exponential backoff; the first chunk that
    exhausts its retries aborts the whole upload. ``pause()`` stops workers
    from taking new chunks, ``cancel()`` aborts every in-flight request and
    makes the engine terminal.
    """

    def __init__(
        self,
        api: UploadApiClient,
        chunk_size: int = CHUNK_SIZE_BYTES,
        hash_block_size: int = HASH_BLOCK_SIZE_BYTES,
        hasher_factory: Callable = hashlib.md5
    ):
        """
        Initialize upload engine.

        Args:
            api: Client for the remote upload API
            chunk_size: Chunk length used when the server does not dictate one
            hash_block_size: Read size while hashing
            hasher_factory: hashlib-style constructor for the content digest
        """
        self._api = api
        self.chunk_size = chunk_size
        self.hash_block_size = hash_block_size
        self._hasher_factory = hasher_factory
        self._transfer = ChunkTransfer(api)

        self._paused = False
        self._cancelled = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._cancel_event = asyncio.Event()

        self.chunk_retry_count: Dict[int, int] = {}
        self._chunk_progress: Dict[int, float] = {}
        self.session_id: Optional[str] = None

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def in_flight_chunks(self) -> List[int]:
        return self._transfer.in_flight

    async def upload(self, file: UploadFile, options: Optional[UploadOptions] = None) -> Optional[Dict[str, Any]]:
        """
        Upload a file end to end.

        Args:
            file: File to upload
            options: Callbacks and tuning (defaults apply when omitted)

        Returns:
            The server's completion payload, the artifact reference for an
            instant upload, or None when the upload was cancelled

        Raises:
            ReadError, PrepareError, ChunkError, CompleteError: After being
            reported once through ``options.on_error``
        """
        options = options or UploadOptions()
        self._chunk_progress.clear()

        try:
            return await self._upload(file, options)
        except UploadCancelledError:
            logger.info(f"Upload cancelled [file={file.name}, session_id={self.session_id}]")
            return None
        except UploadError as e:
            logger.error(f"Upload failed [file={file.name}, session_id={self.session_id}]: {e}")
            if options.on_error:
                options.on_error(e)
            raise

    async def _upload(self, file: UploadFile, options: UploadOptions) -> Dict[str, Any]:
        self._raise_if_cancelled()
        file_hash = await compute_file_hash_async(file, self.hash_block_size, self._hasher_factory)
        logger.debug(f"Hashed {file.name} [size={file.size}, hash={file_hash}]")

        await self._checkpoint()
        session = await self._api.prepare(file.name, file.size, file_hash)
        self.session_id = session.session_id
        await self._checkpoint()

        if session.completed:
            logger.info(f"Instant upload, content already on server [file={file.name}, session_id={session.session_id}]")
            result = {
                'fileName': file.name,
                'downloadLink': session.download_url,
                'fileId': session.final_file_id,
            }
            if options.on_complete:
                options.on_complete(result)
            return result

        chunk_size = session.chunk_size or self.chunk_size
        total_chunks = session.total_chunks or math.ceil(file.size / chunk_size)
        pending = self.missing_chunks(session, total_chunks)

        logger.info(
            f"Upload prepared [file={file.name}, session_id={session.session_id}, "
            f"resumable={session.resumable}, missing={len(pending)}/{total_chunks}]"
        )

        if pending:
            await self._upload_chunks(file, session.session_id, pending, total_chunks, chunk_size, options)

        await self._checkpoint()
        result = await self._api.complete(session.session_id)
        logger.info(f"Upload complete [file={file.name}, session_id={session.session_id}]")
        if options.on_complete:
            options.on_complete(result)
        return result

    @staticmethod
    def missing_chunks(session: UploadSession, total_chunks: int) -> List[int]:
        """Chunk indices in ``[0, total_chunks)`` the server does not have yet."""
        uploaded = {i for i in (session.uploaded_chunks or []) if 0 <= i < total_chunks}
        return [i for i in range(total_chunks) if i not in uploaded]

    async def _upload_chunks(
        self,
        file: UploadFile,
        session_id: str,
        pending: List[int],
        total_chunks: int,
        chunk_size: int,
        options: UploadOptions
    ) -> None:
        run = _TransferRun(
            session_id=session_id,
            total_chunks=total_chunks,
            chunk_size=chunk_size,
            queue=deque(pending),
            completed=total_chunks - len(pending),
        )
        worker_count = min(max(1, options.concurrency), len(pending))
        workers = [asyncio.ensure_future(self._worker(file, run, options)) for _ in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            self._stop_workers(run, workers)
            raise

        if run.error is not None:
            raise run.error

    def _stop_workers(self, run: _TransferRun, workers: List[asyncio.Future]) -> None:
        """Shut down sibling workers after one of them raised outside the chunk protocol."""
        run.aborted = True
        run.queue.clear()
        run.abort_event.set()
        for worker in workers:
            if not worker.done():
                worker.cancel()
        aborted = self._transfer.abort_all()
        logger.error(f"Stopped {len(workers)} worker(s), {aborted} request(s) aborted [session_id={run.session_id}]")

    async def _worker(self, file: UploadFile, run: _TransferRun, options: UploadOptions) -> None:
        while True:
            await self._wait_while_paused()
            if self._cancelled or run.aborted or not run.queue:
                return

            chunk_index = run.queue.popleft()
            try:
                data = await read_chunk(file, chunk_index, run.chunk_size)
                await self._send_with_retry(run, chunk_index, data, options)
            except UploadCancelledError:
                self._chunk_progress.pop(chunk_index, None)
                if self._cancelled or run.aborted:
                    return
                self._abort_run(run, ChunkError(f"Chunk {chunk_index} request aborted", chunk_index))
                return
            except UploadError as e:
                self._chunk_progress.pop(chunk_index, None)
                if self._cancelled:
                    return
                self._abort_run(run, e)
                return

            self._chunk_progress.pop(chunk_index, None)
            if self._cancelled or run.aborted:
                return

            run.completed += 1
            logger.debug(f"Chunk {chunk_index} uploaded [session_id={run.session_id}, done={run.completed}/{run.total_chunks}]")
            if options.on_chunk_complete:
                options.on_chunk_complete(chunk_index, run.total_chunks, run.session_id, run.completed)
            self._report_progress(run, chunk_index, 1.0, options)

    async def _send_with_retry(
        self,
        run: _TransferRun,
        chunk_index: int,
        data: bytes,
        options: UploadOptions
    ) -> None:
        last_error: Optional[ChunkError] = None

        def on_bytes(sent: int, total: int) -> None:
            self._on_chunk_bytes(run, chunk_index, sent, total, options)

        for attempt in range(options.max_retries + 1):
            if attempt > 0:
                delay = options.retry_delay * 2 ** (attempt - 1)
                logger.warning(
                    f"Chunk {chunk_index} retry {attempt}/{options.max_retries} in {delay}s "
                    f"[session_id={run.session_id}]: {last_error}"
                )
                await self._backoff(run, delay)

            if self._cancelled or run.aborted:
                raise UploadCancelledError(f"Chunk {chunk_index} abandoned")

            try:
                await self._transfer.send(run.session_id, chunk_index, data, on_bytes)
            except ChunkError as e:
                last_error = e
                self.chunk_retry_count[chunk_index] = attempt + 1
                continue

            self.chunk_retry_count.pop(chunk_index, None)
            return

        logger.error(f"Chunk {chunk_index} failed after {options.max_retries} retries [session_id={run.session_id}]")
        raise last_error

    async def _backoff(self, run: _TransferRun, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early on cancel or abort."""
        waiters = [
            asyncio.ensure_future(self._cancel_event.wait()),
            asyncio.ensure_future(run.abort_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=delay, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    def _abort_run(self, run: _TransferRun, error: UploadError) -> None:
        if run.aborted:
            logger.debug(f"Ignoring error after abort [session_id={run.session_id}]: {error}")
            return
        run.aborted = True
        run.error = error
        run.queue.clear()
        run.abort_event.set()
        aborted = self._transfer.abort_all()
        logger.error(
            f"Aborting upload, {aborted} request(s) in flight cancelled [session_id={run.session_id}]: {error}"
        )

    def _on_chunk_bytes(
        self,
        run: _TransferRun,
        chunk_index: int,
        sent: int,
        total: int,
        options: UploadOptions
    ) -> None:
        if self._cancelled or run.aborted:
            return
        partial = min(sent / total * IN_FLIGHT_CHUNK_WEIGHT, IN_FLIGHT_CHUNK_WEIGHT) if total > 0 else 0.0
        self._chunk_progress[chunk_index] = max(self._chunk_progress.get(chunk_index, 0.0), partial)
        self._report_progress(run, chunk_index, partial / IN_FLIGHT_CHUNK_WEIGHT, options)

    def _report_progress(
        self,
        run: _TransferRun,
        chunk_index: int,
        stage_ratio: float,
        options: UploadOptions
    ) -> None:
        in_flight = sum(self._chunk_progress.values())
        percent = min((run.completed + in_flight) / run.total_chunks * 100, 100.0)
        # never move backwards within one attempt
        percent = max(percent, run.last_percent)
        run.last_percent = percent
        if options.on_progress:
            options.on_progress(percent, chunk_index, run.total_chunks, run.session_id, min(stage_ratio, 1.0))

    async def _wait_while_paused(self) -> None:
        while self._paused and not self._cancelled:
            await self._resume_event.wait()

    def _raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise UploadCancelledError("Upload cancelled")

    async def _checkpoint(self) -> None:
        """Hold a paused upload here; raise once it is cancelled."""
        await self._wait_while_paused()
        self._raise_if_cancelled()

    def pause(self) -> None:
        """Stop workers from starting new chunks; in-flight chunks finish."""
        if not self._paused:
            self._paused = True
            self._resume_event.clear()
            logger.info(f"Upload paused [session_id={self.session_id}]")

    def resume(self) -> None:
        """Let paused workers continue."""
        if self._paused:
            self._paused = False
            self._resume_event.set()
            logger.info(f"Upload resumed [session_id={self.session_id}]")

    def cancel(self) -> None:
        """Abort all in-flight chunk requests and stop the upload for good."""
        self._cancelled = True
        self._cancel_event.set()
        self._resume_event.set()
        aborted = self._transfer.abort_all()
        logger.info(f"Upload cancelled locally [session_id={self.session_id}, aborted={aborted}]")

    async def cancel_task(self, session_id: str) -> None:
        """Tell the server to discard a prepared but incomplete session."""
        await self._api.cancel(session_id)
