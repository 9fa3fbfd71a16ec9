"""Command handler functions for CLI operations."""

from typing import List, Optional

from cli.models import CancelCommand, CommandRequest, TasksCommand, UploadCommand
from cli.utils import ProgressPrinter, format_duration, format_file_size
from common.logging_config import get_logger
from common.types import UploadFile
from uploader.api_client import UploadApiClient
from uploader.config import Config
from uploader.exceptions import UploadError
from uploader.models import UploadOptions
from uploader.queue_manager import QueueOptions, TaskStatus, UploadQueueManager, UploadTask
from uploader.resumable_uploader import ResumableUploader
from uploader.storage import JsonFileStore

logger = get_logger(__name__)


def build_queue(client: UploadApiClient, config: Config) -> UploadQueueManager:
    """
    Create a stopped upload queue configured from ``config``.

    Args:
        client: API client shared by every engine
        config: Configuration instance

    Returns:
        UploadQueueManager that persists to the configured store
    """
    queue_config = config.get_queue_config()
    retry_config = config.get_retry_config()

    store = None
    if queue_config['persist_queue'] and queue_config['queue_store_path']:
        store = JsonFileStore(queue_config['queue_store_path'])

    options = QueueOptions(
        max_concurrent=queue_config['max_concurrent'],
        auto_start=False,
        persist_queue=queue_config['persist_queue'],
        max_bandwidth=queue_config['max_bandwidth'],
        chunk_concurrency=retry_config['concurrency'],
        max_retries=retry_config['max_retries'],
        retry_delay=retry_config['retry_delay'],
    )
    chunk_size = config.get_chunk_size()
    return UploadQueueManager(
        client,
        options,
        store=store,
        uploader_factory=lambda: ResumableUploader(client, chunk_size=chunk_size),
    )


def _describe_task(task: UploadTask) -> str:
    if task.status == TaskStatus.COMPLETED:
        line = f"Uploaded: {task.file.name} (Size: {format_file_size(task.file.size)}"
        if task.server_task_id:
            line += f", Session: {task.server_task_id[:8]}..."
        line += ")"
        link = (task.result or {}).get('downloadLink')
        if link:
            line += f"\n  Link: {link}"
        return line
    if task.status == TaskStatus.FAILED:
        return f"Error uploading {task.file.name}: {task.error} (after {task.retries} attempts)"
    return f"{task.file.name}: {task.status.value} ({task.progress:.1f}%)"


async def handle_upload(
    cmd: UploadCommand,
    client: UploadApiClient,
    config: Config,
    printer: Optional[ProgressPrinter] = None
) -> str:
    """
    Handle 'upload' command.

    Args:
        cmd: UploadCommand with file_list and priority
        client: UploadApiClient (injected for testing)
        config: Configuration instance
        printer: Progress output, stdout when omitted

    Returns:
        Per-file result lines followed by a summary
    """
    logger.info(f"Executing upload command: {len(cmd.file_list)} files, priority={cmd.priority}")
    printer = printer or ProgressPrinter()
    results: List[str] = []
    files: List[UploadFile] = []

    for path in cmd.file_list:
        try:
            files.append(UploadFile.from_path(path))
        except FileNotFoundError:
            results.append(f"Error: File not found: {path}")
        except OSError as e:
            results.append(f"Error: Cannot read {path}: {e}")

    if not files:
        return '\n'.join(results) if results else "No files uploaded."

    queue = build_queue(client, config)
    retry_config = config.get_retry_config()

    for file in files:
        def on_progress(percent, chunk_index, total_chunks, session_id, stage_ratio, file=file):
            printer.update(file.name, percent, file.size)

        queue.add_task(file, cmd.priority, UploadOptions(
            on_progress=on_progress,
            concurrency=retry_config['concurrency'],
            max_retries=retry_config['max_retries'],
            retry_delay=retry_config['retry_delay'],
        ))

    queue.start()
    await queue.wait_until_idle()
    printer.finish()

    results.extend(_describe_task(task) for task in queue.get_tasks())

    stats = queue.get_statistics()
    results.append(
        f"\n{stats.completed} completed, {stats.failed} failed, {stats.total} total"
    )
    if stats.pending or stats.uploading:
        results.append(f"Estimated time remaining: {format_duration(stats.estimated_time)}")
    return '\n'.join(results)


async def handle_tasks(cmd: TasksCommand, client: UploadApiClient) -> str:
    """
    Handle 'tasks' command.

    Returns:
        Formatted list of unfinished server sessions
    """
    try:
        tasks = await client.list_tasks()
    except UploadError as e:
        return f"Error: {e}"

    if not tasks:
        return "No unfinished uploads on the server."

    output = [f"Found {len(tasks)} upload task(s):\n"]
    for task in tasks:
        progress = f"{task.progress:.1f}%" if task.progress is not None else "?"
        chunks = f"{task.uploaded_chunks}/{task.total_chunks}" if task.total_chunks else "?"
        line = (
            f"  - {task.file_name} (Session: {task.id})\n"
            f"    Size: {format_file_size(task.file_size)}, Chunks: {chunks}, Progress: {progress}\n"
            f"    Status: {task.status_text or task.status or 'unknown'}"
        )
        if task.expires_at:
            line += f", Expires: {task.expires_at}"
        if task.error_message:
            line += f"\n    Error: {task.error_message}"
        output.append(line)
    return '\n'.join(output)


async def handle_cancel(cmd: CancelCommand, client: UploadApiClient) -> str:
    """
    Handle 'cancel' command.

    Returns:
        Success or error message
    """
    try:
        await client.cancel(cmd.session_id)
    except UploadError as e:
        return f"Error: {e}"
    return f"Cancelled upload session {cmd.session_id}"


async def dispatch_command(cmd: CommandRequest, client: UploadApiClient, config: Config) -> str:
    """Dispatch parsed command to appropriate handler."""
    if isinstance(cmd, UploadCommand):
        return await handle_upload(cmd, client, config)
    elif isinstance(cmd, TasksCommand):
        return await handle_tasks(cmd, client)
    elif isinstance(cmd, CancelCommand):
        return await handle_cancel(cmd, client)
    else:
        return f"Unknown command type: {type(cmd)}"
