"""Utility functions for CLI output."""

import sys
from typing import Dict, TextIO

from cli.constants import GREEN, RESET


class ProgressPrinter:
    """Writes a single, rewritten progress line per file to a stream."""

    def __init__(self, stream: TextIO = sys.stdout):
        """
        Initialize the progress printer.

        Args:
            stream: Output stream, stdout by default
        """
        self.stream = stream
        self._last_shown: Dict[str, int] = {}

    def update(self, filename: str, percent: float, file_size: int) -> None:
        """
        Show progress for a file, only when the whole percentage changes.

        Args:
            filename: Display name of the file
            percent: Progress 0-100
            file_size: Total size in bytes
        """
        shown = int(percent)
        if self._last_shown.get(filename) == shown:
            return
        self._last_shown[filename] = shown

        uploaded = int(file_size * percent / 100)
        self.stream.write(
            f"\rUploading {filename}: {format_file_size(uploaded)} / {format_file_size(file_size)} "
            f"({GREEN}{percent:.1f}%{RESET})"
        )
        self.stream.flush()

    def finish(self) -> None:
        """Terminate the progress line."""
        if self._last_shown:
            self.stream.write('\n')
            self.stream.flush()
        self._last_shown.clear()


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def format_duration(seconds: float) -> str:
    """Format a duration as e.g. '1h 02m 03s', '4m 05s' or '7s'."""
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"
