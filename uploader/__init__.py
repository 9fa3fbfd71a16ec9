"""Resumable chunked upload engine and queue scheduler."""

from uploader.api_client import UploadApiClient
from uploader.bandwidth import BandwidthMonitor
from uploader.config import Config
from uploader.exceptions import (
    ChunkError,
    CompleteError,
    PrepareError,
    ReadError,
    UploadCancelledError,
    UploadError,
)
from uploader.models import UploadOptions, UploadSession
from uploader.queue_manager import QueueOptions, TaskStatus, UploadQueueManager, UploadTask
from uploader.resumable_uploader import ResumableUploader
from uploader.storage import JsonFileStore, MemoryStore

__all__ = [
    "BandwidthMonitor",
    "ChunkError",
    "CompleteError",
    "Config",
    "JsonFileStore",
    "MemoryStore",
    "PrepareError",
    "QueueOptions",
    "ReadError",
    "ResumableUploader",
    "TaskStatus",
    "UploadApiClient",
    "UploadCancelledError",
    "UploadError",
    "UploadOptions",
    "UploadQueueManager",
    "UploadSession",
    "UploadTask",
]
