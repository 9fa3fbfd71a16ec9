"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal

from common.constants import DEFAULT_PRIORITY


@dataclass(frozen=True)
class UploadCommand:
    """Queue and upload local files."""

    file_list: tuple[str, ...]
    priority: int = DEFAULT_PRIORITY
    command: Literal["upload"] = "upload"


@dataclass(frozen=True)
class TasksCommand:
    """List unfinished server-side upload sessions."""

    command: Literal["tasks"] = "tasks"


@dataclass(frozen=True)
class CancelCommand:
    """Discard a server-side upload session."""

    session_id: str
    command: Literal["cancel"] = "cancel"


@dataclass(frozen=True)
class HelpCommand:
    """Show usage."""

    command: Literal["help"] = "help"


CommandRequest = UploadCommand | TasksCommand | CancelCommand | HelpCommand
