"""
Upload queue scheduler.

Runs many ResumableUploader instances under a global concurrency ceiling,
ordering pending tasks by priority (FIFO within a priority) and re-queueing
failed tasks a bounded number of times. Task metadata is persisted to a
key-value store after every mutation; the file content itself cannot be
persisted, so stored records are informational only.
"""

import asyncio
import dataclasses
import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from common.constants import (
    DEFAULT_CHUNK_CONCURRENCY,
    DEFAULT_MAX_CONCURRENT_UPLOADS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PRIORITY,
    DEFAULT_RETRY_DELAY_SECONDS,
    MAX_CHUNK_CONCURRENCY,
    MAX_PRIORITY,
    MAX_TASK_ATTEMPTS,
    MIN_CHUNK_CONCURRENCY,
    MIN_PRIORITY,
    QUEUE_STORAGE_KEY,
)
from common.logging_config import get_logger
from common.types import FileInfo, UploadFile
from uploader.api_client import UploadApiClient
from uploader.bandwidth import BandwidthMonitor
from uploader.exceptions import UploadError
from uploader.models import UploadOptions
from uploader.resumable_uploader import ResumableUploader
from uploader.storage import KeyValueStore, MemoryStore

logger = get_logger(__name__)


class TaskStatus(str, Enum):
    PENDING = 'pending'
    UPLOADING = 'uploading'
    COMPLETED = 'completed'
    FAILED = 'failed'
    PAUSED = 'paused'


def clamp_priority(priority: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, int(priority)))


@dataclass
class UploadTask:
    """
    One file submitted to the queue.

    Attributes:
        id: In-process task identifier
        file: File reference, content is read lazily
        priority: 1-10, higher is served first
        status: Current TaskStatus
        progress: Percentage reported by the engine
        server_task_id: Session id assigned by the server's prepare handshake
        sequence: Submission order, breaks ties between equal timestamps
    """
    id: str
    file: UploadFile
    priority: int
    added_at: datetime
    sequence: int
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    retries: int = 0
    options: Optional[UploadOptions] = None
    result: Optional[Dict[str, Any]] = None
    server_task_id: Optional[str] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class TaskRecord:
    """Persistable projection of an UploadTask, the file reduced to FileInfo."""
    id: str
    file_info: FileInfo
    priority: int
    status: str
    progress: float
    added_at: Optional[datetime]
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    retries: int = 0
    server_task_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @classmethod
    def from_task(cls, task: UploadTask) -> 'TaskRecord':
        return cls(
            id=task.id,
            file_info=task.file.info(),
            priority=task.priority,
            status=task.status.value,
            progress=task.progress,
            added_at=task.added_at,
            started_at=task.started_at,
            completed_at=task.completed_at,
            error=task.error,
            retries=task.retries,
            server_task_id=task.server_task_id,
            result=task.result,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        for key in ('added_at', 'started_at', 'completed_at'):
            data[key] = _iso(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskRecord':
        return cls(
            id=data['id'],
            file_info=FileInfo(**data['file_info']),
            priority=data['priority'],
            status=data['status'],
            progress=data.get('progress', 0.0),
            added_at=_parse_iso(data.get('added_at')),
            started_at=_parse_iso(data.get('started_at')),
            completed_at=_parse_iso(data.get('completed_at')),
            error=data.get('error'),
            retries=data.get('retries', 0),
            server_task_id=data.get('server_task_id'),
            result=data.get('result'),
        )


@dataclass
class QueueOptions:
    """
    Scheduler settings and callbacks.

    Attributes:
        max_concurrent: Upper bound on simultaneously active engines
        auto_start: Start processing on construction
        persist_queue: Save task metadata to the store after each mutation
        max_bandwidth: Bytes/second budget, 0 disables adaptive chunk concurrency
        chunk_concurrency: Initial per-engine chunk concurrency
        max_retries: Default per-chunk retries for tasks without options
        retry_delay: Default base backoff for tasks without options
    """
    max_concurrent: int = DEFAULT_MAX_CONCURRENT_UPLOADS
    auto_start: bool = True
    persist_queue: bool = True
    max_bandwidth: float = 0
    chunk_concurrency: int = DEFAULT_CHUNK_CONCURRENCY
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS
    on_task_complete: Optional[Callable[[UploadTask], None]] = None
    on_task_failed: Optional[Callable[[UploadTask, Exception], None]] = None
    on_queue_update: Optional[Callable[[List[UploadTask]], None]] = None


@dataclass
class QueueStatistics:
    total: int = 0
    pending: int = 0
    uploading: int = 0
    completed: int = 0
    failed: int = 0
    paused: int = 0
    total_progress: float = 0.0
    estimated_time: float = 0.0
    current_bandwidth: float = 0.0


class UploadQueueManager:
    """
    Priority scheduler for many concurrent file uploads.

    Must be driven from a running asyncio event loop: admitting a task
    schedules its upload as a background task.
    """

    def __init__(
        self,
        api: UploadApiClient,
        options: Optional[QueueOptions] = None,
        store: Optional[KeyValueStore] = None,
        uploader_factory: Optional[Callable[[], ResumableUploader]] = None,
        bandwidth_monitor: Optional[BandwidthMonitor] = None
    ):
        """
        Initialize upload queue.

        Args:
            api: Client shared by every engine
            options: Scheduler settings (defaults when omitted)
            store: Metadata store (in-memory when omitted)
            uploader_factory: Builds a fresh engine per task attempt
            bandwidth_monitor: Throughput estimator fed from progress callbacks
        """
        self._api = api
        self.options = options or QueueOptions()
        self._store: KeyValueStore = store if store is not None else MemoryStore()
        self._uploader_factory = uploader_factory or (lambda: ResumableUploader(self._api))
        self._bandwidth = bandwidth_monitor or BandwidthMonitor()

        self._tasks: Dict[str, UploadTask] = {}
        self._active: Dict[str, ResumableUploader] = {}
        self._parked: Dict[str, ResumableUploader] = {}
        self._runners: Set[asyncio.Future] = set()
        self._running = False
        self._sequence = 0
        self._chunk_concurrency = self.options.chunk_concurrency
        self._idle = asyncio.Event()
        self._idle.set()

        self.stored_records: List[TaskRecord] = []
        if self.options.persist_queue:
            self._load_queue()

        if self.options.auto_start:
            self.start()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def bandwidth_monitor(self) -> BandwidthMonitor:
        return self._bandwidth

    def add_task(self, file: UploadFile, priority: int = DEFAULT_PRIORITY,
                 options: Optional[UploadOptions] = None) -> str:
        """
        Queue a file for upload.

        Args:
            file: File to upload
            priority: 1-10 (clamped), higher is served first
            options: Per-task callbacks and tuning

        Returns:
            Task identifier
        """
        task_id = self._generate_task_id(file)
        self._sequence += 1
        task = UploadTask(
            id=task_id,
            file=file,
            priority=clamp_priority(priority),
            added_at=datetime.now(),
            sequence=self._sequence,
            options=options,
        )
        self._tasks[task_id] = task
        self._sort_queue()
        self._save_queue()
        self._notify_update()
        logger.info(f"Task queued [task_id={task_id}, priority={task.priority}, size={file.size}]")

        if self._running:
            self._process_next()
        return task_id

    def add_batch(self, files: List[UploadFile], priority: int = DEFAULT_PRIORITY,
                  options: Optional[UploadOptions] = None) -> List[str]:
        return [self.add_task(file, priority, options) for file in files]

    def remove_task(self, task_id: str) -> bool:
        """Cancel the task's engine if it has one and drop the task."""
        if task_id not in self._tasks:
            return False

        uploader = self._detach_engine(task_id)
        if uploader:
            uploader.cancel()

        del self._tasks[task_id]
        self._save_queue()
        self._notify_update()
        logger.info(f"Task removed [task_id={task_id}]")
        self._process_next()
        return True

    async def cancel_task(self, task_id: str) -> bool:
        """
        Cancel a task, discard its server session and drop it.

        Failure to reach the server is logged, not raised.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return False

        uploader = self._detach_engine(task_id)
        if uploader:
            uploader.cancel()
            session_id = task.server_task_id or uploader.session_id
            if session_id:
                try:
                    await uploader.cancel_task(session_id)
                except UploadError as e:
                    logger.warning(f"Failed to discard server session [task_id={task_id}, session_id={session_id}]: {e}")

        self._tasks.pop(task_id, None)
        self._save_queue()
        self._notify_update()
        logger.info(f"Task cancelled [task_id={task_id}]")
        self._process_next()
        return True

    async def cancel_all(self) -> None:
        for task_id in list(self._tasks):
            await self.cancel_task(task_id)

    def pause_task(self, task_id: str) -> bool:
        """Pause an uploading task or hold back a pending one."""
        task = self._tasks.get(task_id)
        if task is None:
            return False

        uploader = self._active.pop(task_id, None)
        if uploader:
            uploader.pause()
            self._parked[task_id] = uploader
            task.status = TaskStatus.PAUSED
        elif task.status == TaskStatus.PENDING:
            task.status = TaskStatus.PAUSED
        else:
            return False

        self._save_queue()
        self._notify_update()
        logger.info(f"Task paused [task_id={task_id}]")
        self._process_next()
        return True

    def resume_task(self, task_id: str) -> bool:
        """Return a paused task to the pending queue."""
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.PAUSED:
            return False

        parked = self._parked.pop(task_id, None)
        if parked:
            parked.cancel()

        task.status = TaskStatus.PENDING
        self._save_queue()
        self._notify_update()
        logger.info(f"Task resumed [task_id={task_id}]")
        self._process_next()
        return True

    def set_priority(self, task_id: str, priority: int) -> bool:
        """Change the priority of a pending task."""
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.PENDING:
            return False

        task.priority = clamp_priority(priority)
        self._sort_queue()
        self._save_queue()
        self._notify_update()
        return True

    def start(self) -> None:
        self._running = True
        logger.info("Upload queue started")
        self._process_next()

    def stop(self) -> None:
        """Pause every active engine and stop admitting tasks; queued tasks are kept."""
        self._running = False

        for task_id, uploader in self._active.items():
            uploader.pause()
            self._parked[task_id] = uploader
            task = self._tasks.get(task_id)
            if task:
                task.status = TaskStatus.PAUSED

        self._active.clear()
        self._save_queue()
        self._notify_update()
        self._update_idle()
        logger.info("Upload queue stopped")

    def clear(self) -> None:
        """Stop the queue and drop every task."""
        self.stop()
        for uploader in self._parked.values():
            uploader.cancel()
        self._parked.clear()
        self._tasks.clear()
        self._save_queue()
        if self.options.on_queue_update:
            self.options.on_queue_update([])
        self._update_idle()

    def get_task(self, task_id: str) -> Optional[UploadTask]:
        return self._tasks.get(task_id)

    def get_tasks(self) -> List[UploadTask]:
        return list(self._tasks.values())

    def get_statistics(self) -> QueueStatistics:
        """
        Aggregate counts, mean progress, bandwidth and time estimate.

        Returns:
            QueueStatistics; estimated_time is in seconds and 0 while
            bandwidth is unmeasured
        """
        tasks = self.get_tasks()
        stats = QueueStatistics(
            total=len(tasks),
            current_bandwidth=self._bandwidth.current_bandwidth(),
        )
        for task in tasks:
            setattr(stats, task.status.value, getattr(stats, task.status.value) + 1)

        if tasks:
            stats.total_progress = sum(t.progress for t in tasks) / len(tasks)

        if stats.current_bandwidth > 0:
            remaining = sum(
                t.file.size * (1 - t.progress / 100)
                for t in tasks
                if t.status in (TaskStatus.PENDING, TaskStatus.UPLOADING)
            )
            stats.estimated_time = remaining / stats.current_bandwidth

        return stats

    async def wait_until_idle(self) -> None:
        """Wait until no engine is active and no pending task can be admitted."""
        await self._idle.wait()

    def _process_next(self) -> None:
        while self._running and len(self._active) < self.options.max_concurrent:
            task = self._next_pending_task()
            if task is None:
                break
            self._start_task(task)
        self._update_idle()

    def _start_task(self, task: UploadTask) -> None:
        task.status = TaskStatus.UPLOADING
        task.started_at = datetime.now()

        uploader = self._uploader_factory()
        self._active[task.id] = uploader
        upload_options = self._build_upload_options(task, uploader)

        self._save_queue()
        self._notify_update()
        logger.info(
            f"Task started [task_id={task.id}, priority={task.priority}, "
            f"attempt={task.retries + 1}, chunk_concurrency={upload_options.concurrency}]"
        )

        runner = asyncio.ensure_future(self._run_task(task, uploader, upload_options))
        self._runners.add(runner)
        runner.add_done_callback(self._runners.discard)

    async def _run_task(self, task: UploadTask, uploader: ResumableUploader, options: UploadOptions) -> None:
        try:
            await uploader.upload(task.file, options)
        except UploadError:
            # already handled by the on_error hook
            pass
        except Exception as e:
            logger.error(f"Unexpected error uploading task [task_id={task.id}]: {e}", exc_info=True)
            self._handle_failure(task, uploader, e)

    def _build_upload_options(self, task: UploadTask, uploader: ResumableUploader) -> UploadOptions:
        base = task.options or UploadOptions(
            concurrency=self.options.chunk_concurrency,
            max_retries=self.options.max_retries,
            retry_delay=self.options.retry_delay,
        )

        def on_progress(percent, chunk_index, total_chunks, session_id, stage_ratio):
            if self._active.get(task.id) is not uploader:
                return
            if session_id and task.server_task_id != session_id:
                task.server_task_id = session_id
            task.progress = percent
            self._bandwidth.record_progress(percent, task.file.size)
            self._notify_update()
            if base.on_progress:
                base.on_progress(percent, chunk_index, total_chunks, session_id, stage_ratio)

        def on_complete(result):
            self._handle_success(task, uploader, result)

        def on_error(error):
            self._handle_failure(task, uploader, error)

        options = dataclasses.replace(
            base,
            on_progress=on_progress,
            on_complete=on_complete,
            on_error=on_error,
        )
        if self.options.max_bandwidth > 0:
            options.concurrency = self._calculate_optimal_concurrency()
        return options

    def _handle_success(self, task: UploadTask, uploader: ResumableUploader, result: Dict[str, Any]) -> None:
        if self._active.get(task.id) is not uploader:
            logger.debug(f"Discarding result of detached engine [task_id={task.id}]")
            return
        del self._active[task.id]

        task.status = TaskStatus.COMPLETED
        task.completed_at = datetime.now()
        task.result = result
        task.progress = 100.0
        task.error = None
        if uploader.session_id and not task.server_task_id:
            task.server_task_id = uploader.session_id

        self._save_queue()
        logger.info(f"Task completed [task_id={task.id}, session_id={task.server_task_id}]")
        if self.options.on_task_complete:
            self.options.on_task_complete(task)
        self._notify_update()
        if task.options and task.options.on_complete:
            task.options.on_complete(result)
        self._process_next()

    def _handle_failure(self, task: UploadTask, uploader: ResumableUploader, error: Exception) -> None:
        if self._active.get(task.id) is not uploader:
            logger.debug(f"Discarding error of detached engine [task_id={task.id}]: {error}")
            return
        del self._active[task.id]

        task.retries += 1
        task.error = str(error)
        if task.retries < MAX_TASK_ATTEMPTS:
            task.status = TaskStatus.PENDING
            logger.warning(f"Task failed, re-queued [task_id={task.id}, retries={task.retries}]: {error}")
        else:
            task.status = TaskStatus.FAILED
            logger.error(f"Task failed permanently [task_id={task.id}, retries={task.retries}]: {error}")
            if self.options.on_task_failed:
                self.options.on_task_failed(task, error)

        self._save_queue()
        self._notify_update()
        if task.options and task.options.on_error:
            task.options.on_error(error)
        self._process_next()

    def _detach_engine(self, task_id: str) -> Optional[ResumableUploader]:
        uploader = self._active.pop(task_id, None)
        parked = self._parked.pop(task_id, None)
        return uploader or parked

    def _next_pending_task(self) -> Optional[UploadTask]:
        pending = [t for t in self._tasks.values() if t.status == TaskStatus.PENDING]
        if not pending:
            return None
        return min(pending, key=self._order_key)

    @staticmethod
    def _order_key(task: UploadTask):
        return (-task.priority, task.added_at, task.sequence)

    def _sort_queue(self) -> None:
        ordered = sorted(self._tasks.values(), key=self._order_key)
        self._tasks = {task.id: task for task in ordered}

    def _calculate_optimal_concurrency(self) -> int:
        """Nudge per-engine chunk concurrency toward the bandwidth budget."""
        current = self._bandwidth.current_bandwidth()
        target = self.options.max_bandwidth / self.options.max_concurrent

        if current > target * 2:
            self._chunk_concurrency = min(MAX_CHUNK_CONCURRENCY, self._chunk_concurrency + 1)
        elif current < target * 0.5:
            self._chunk_concurrency = max(MIN_CHUNK_CONCURRENCY, self._chunk_concurrency - 1)

        return self._chunk_concurrency

    def _generate_task_id(self, file: UploadFile) -> str:
        base = f"{int(time.time() * 1000)}_{file.name}_{file.size}"
        task_id = base
        suffix = 1
        while task_id in self._tasks:
            task_id = f"{base}_{suffix}"
            suffix += 1
        return task_id

    def _update_idle(self) -> None:
        busy = bool(self._active) or (self._running and self._next_pending_task() is not None)
        if busy:
            self._idle.clear()
        else:
            self._idle.set()

    def _notify_update(self) -> None:
        if self.options.on_queue_update:
            self.options.on_queue_update(self.get_tasks())

    def _save_queue(self) -> None:
        if not self.options.persist_queue:
            return

        records = [TaskRecord.from_task(task).to_dict() for task in self._tasks.values()]
        try:
            self._store.put(QUEUE_STORAGE_KEY, json.dumps(records))
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to persist queue metadata: {e}")

    def _load_queue(self) -> None:
        raw = self._store.get(QUEUE_STORAGE_KEY)
        if not raw:
            return

        try:
            self.stored_records = [TaskRecord.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to load stored queue metadata: {e}")
            return

        logger.info(
            f"Loaded {len(self.stored_records)} stored task record(s); "
            "files must be selected again to resume them"
        )
