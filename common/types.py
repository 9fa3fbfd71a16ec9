"""Shared data type definitions (UploadFile, FileInfo)."""

import mimetypes
import os
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class FileInfo:
    """
    Descriptive summary of a file, safe to persist.
    """
    name: str
    size: int
    type: str
    last_modified: int


@dataclass(frozen=True)
class UploadFile:
    """
    Reference to a local file selected for upload.

    Only metadata is held; content is read lazily from ``path``.
    Read methods raise OSError when the file is no longer accessible.
    """
    path: str
    name: str
    size: int
    content_type: str
    last_modified: int

    @classmethod
    def from_path(cls, path: str, name: Optional[str] = None) -> 'UploadFile':
        """
        Build a file reference from a filesystem path.

        Args:
            path: Path of the file on disk
            name: Display name (defaults to the path's basename)

        Returns:
            UploadFile with size and modification time taken from stat()
        """
        stat = os.stat(path)
        display_name = name or os.path.basename(path)
        content_type, _ = mimetypes.guess_type(display_name)
        return cls(
            path=str(path),
            name=display_name,
            size=stat.st_size,
            content_type=content_type or 'application/octet-stream',
            last_modified=int(stat.st_mtime * 1000),
        )

    def read_range(self, start: int, end: int) -> bytes:
        """Read bytes in ``[start, end)``."""
        with open(self.path, 'rb') as f:
            f.seek(start)
            return f.read(end - start)

    def iter_blocks(self, block_size: int) -> Iterator[bytes]:
        """Yield the file content in blocks of at most ``block_size`` bytes."""
        with open(self.path, 'rb') as f:
            while True:
                block = f.read(block_size)
                if not block:
                    break
                yield block

    def info(self) -> FileInfo:
        return FileInfo(
            name=self.name,
            size=self.size,
            type=self.content_type,
            last_modified=self.last_modified,
        )
