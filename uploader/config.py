"""Configuration management for the upload client."""

import json
import os
import shutil
from pathlib import Path
from typing import Optional

from common.constants import (
    CHUNK_SIZE_BYTES,
    DEFAULT_API_PREFIX,
    DEFAULT_CHUNK_CONCURRENCY,
    DEFAULT_MAX_CONCURRENT_UPLOADS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
)
from common.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / '.resumable-uploader' / 'config.json'


class Config:
    """Manages client configuration stored in a JSON file."""

    DEFAULT_CONFIG = {
        "server_url": os.environ.get("UPLOAD_SERVER_URL", "http://localhost:8080"),
        "api_prefix": DEFAULT_API_PREFIX,
        "timeout": 30,
        "chunk_size": CHUNK_SIZE_BYTES,
        "chunk_concurrency": DEFAULT_CHUNK_CONCURRENCY,
        "max_retries": DEFAULT_MAX_RETRIES,
        "retry_delay": DEFAULT_RETRY_DELAY_SECONDS,
        "max_concurrent": DEFAULT_MAX_CONCURRENT_UPLOADS,
        "max_bandwidth": 0,
        "persist_queue": True,
        "queue_store_path": str(Path.home() / '.resumable-uploader' / 'queue.json'),
    }

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.resumable-uploader/config.json)
        """
        self.config_path = Path(config_path)
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            import tempfile
            self.config_path = Path(tempfile.gettempdir()) / '.resumable-uploader' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Config file {self.config_path} unreadable ({e}), using defaults")
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError:
                    logger.warning(f"Could not back up corrupt config to {backup_path}")
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except IOError:
                logger.warning(f"Could not write default config to {self.config_path}")
            return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except IOError as e:
            logger.warning(f"Failed to save config to {self.config_path}: {e}")

    def get_api_key(self) -> Optional[str]:
        """
        Get stored API key.

        Returns:
            API key string or None if not set
        """
        return self.data.get('api_key')

    def set_api_key(self, key: str) -> None:
        """
        Set API key and save to file.

        Args:
            key: Bearer token sent with every request
        """
        self.data['api_key'] = key
        self.save()

    def get_base_url(self) -> str:
        """
        Get upload server base URL.

        Returns:
            Base URL string without trailing slash (e.g., "http://localhost:8080")
        """
        return self.data.get('server_url', 'http://localhost:8080').rstrip('/')

    def get_api_prefix(self) -> str:
        return self.data.get('api_prefix', DEFAULT_API_PREFIX)

    def get_timeout(self) -> int:
        """
        Get request timeout in seconds.

        Returns:
            Timeout value in seconds
        """
        return self.data.get('timeout', 30)

    def get_chunk_size(self) -> int:
        return self.data.get('chunk_size', CHUNK_SIZE_BYTES)

    def get_retry_config(self) -> dict:
        """
        Get per-chunk retry configuration.

        Returns:
            Dictionary with 'max_retries', 'retry_delay' and 'concurrency'
        """
        return {
            'max_retries': self.data.get('max_retries', DEFAULT_MAX_RETRIES),
            'retry_delay': self.data.get('retry_delay', DEFAULT_RETRY_DELAY_SECONDS),
            'concurrency': self.data.get('chunk_concurrency', DEFAULT_CHUNK_CONCURRENCY),
        }

    def get_queue_config(self) -> dict:
        """
        Get scheduler configuration.

        Returns:
            Dictionary with 'max_concurrent', 'max_bandwidth', 'persist_queue'
            and 'queue_store_path'
        """
        return {
            'max_concurrent': self.data.get('max_concurrent', DEFAULT_MAX_CONCURRENT_UPLOADS),
            'max_bandwidth': self.data.get('max_bandwidth', 0),
            'persist_queue': self.data.get('persist_queue', True),
            'queue_store_path': self.data.get('queue_store_path'),
        }
