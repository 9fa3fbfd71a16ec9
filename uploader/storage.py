"""
Key-value stores for queue metadata.

The scheduler only needs get/put/remove of string blobs. JsonFileStore keeps
the whole mapping in one JSON file so metadata survives restarts.
"""

import json
from pathlib import Path
from typing import Dict, Optional, Protocol

from common.logging_config import get_logger

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    """Minimal string blob persistence surface."""

    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process store, contents are lost on exit."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    Store persisted to a JSON object file.

    A missing or corrupted file starts an empty store. Failed writes are
    logged and the in-memory copy is kept.
    """

    def __init__(self, path: str):
        """
        Initialize file store.

        Args:
            path: Path to the JSON file (created on first write)
        """
        self._path = Path(path)
        self._data: Dict[str, str] = {}
        self._load_from_disk()

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value
        self._save_to_disk()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._save_to_disk()

    def _load_from_disk(self) -> bool:
        """
        Load the mapping from disk.

        Returns:
            True if load succeeded, False if file missing or corrupted
        """
        if not self._path.exists():
            logger.debug(f"Store file not found at {self._path}, starting empty")
            return False

        try:
            with open(self._path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load store from {self._path}: {e}, starting empty")
            return False

        if not isinstance(data, dict):
            logger.warning(f"Store file {self._path} does not hold an object, starting empty")
            return False

        self._data = {str(k): v for k, v in data.items() if isinstance(v, str)}
        logger.debug(f"Store loaded from {self._path} ({len(self._data)} key(s))")
        return True

    def _save_to_disk(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, 'w') as f:
                json.dump(self._data, f, indent=2)
        except (IOError, OSError) as e:
            logger.warning(
                f"Failed to save store to {self._path}: {e}, "
                "continuing with in-memory copy only"
            )
