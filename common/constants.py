"""Project-wide constants (chunk sizes, protocol codes, queue defaults)."""

CHUNK_SIZE_BYTES: int = 10 * 1024 * 1024  # 10 MiB upload chunk, matches the server's split
HASH_BLOCK_SIZE_BYTES: int = 2 * 1024 * 1024  # read size while hashing, independent of chunk size

DEFAULT_API_PREFIX: str = "/api/resumable"
RESPONSE_SUCCESS_CODE: int = 1

DEFAULT_CHUNK_CONCURRENCY: int = 3
MAX_CHUNK_CONCURRENCY: int = 5
MIN_CHUNK_CONCURRENCY: int = 1
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY_SECONDS: float = 1.0

DEFAULT_MAX_CONCURRENT_UPLOADS: int = 3
MAX_TASK_ATTEMPTS: int = 3
MIN_PRIORITY: int = 1
MAX_PRIORITY: int = 10
DEFAULT_PRIORITY: int = 5

BANDWIDTH_WINDOW_SIZE: int = 10
BANDWIDTH_RATE_SAMPLES: int = 5

QUEUE_STORAGE_KEY: str = "upload_queue"
