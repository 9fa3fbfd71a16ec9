"""Command parser for CLI arguments."""

from cli.constants import PRIORITY_FLAG
from cli.models import (
    CancelCommand,
    CommandRequest,
    HelpCommand,
    TasksCommand,
    UploadCommand,
)
from common.constants import MAX_PRIORITY, MIN_PRIORITY


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(tokens: list[str]) -> CommandRequest:
    """Parse command line tokens into a CommandRequest object.

    Args:
        tokens: Arguments after global flags have been removed

    Returns:
        CommandRequest object (one of Upload/Tasks/Cancel/Help)

    Raises:
        ParseError: If command syntax is invalid
    """
    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "upload":
        return _parse_upload(tokens[1:])
    elif command_name == "tasks":
        return _parse_tasks(tokens[1:])
    elif command_name == "cancel":
        return _parse_cancel(tokens[1:])
    elif command_name in ("help", "-h", "--help"):
        return HelpCommand()
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_upload(args: list[str]) -> UploadCommand:
    """Parse 'upload <file>... [--priority N]' command."""
    file_list = []
    priority = None
    index = 0

    while index < len(args):
        arg = args[index]
        if arg == PRIORITY_FLAG:
            if index + 1 >= len(args):
                raise ParseError(f"{PRIORITY_FLAG} requires a value")
            priority = _parse_priority(args[index + 1])
            index += 2
            continue
        file_list.append(arg)
        index += 1

    if not file_list:
        raise ParseError("upload requires at least one file")

    if priority is None:
        return UploadCommand(file_list=tuple(file_list))
    return UploadCommand(file_list=tuple(file_list), priority=priority)


def _parse_priority(value: str) -> int:
    try:
        priority = int(value)
    except ValueError:
        raise ParseError(f"Invalid priority: {value}")

    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ParseError(f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")
    return priority


def _parse_tasks(args: list[str]) -> TasksCommand:
    """Parse 'tasks' command."""
    if args:
        raise ParseError("tasks takes no arguments")
    return TasksCommand()


def _parse_cancel(args: list[str]) -> CancelCommand:
    """Parse 'cancel <session_id>' command."""
    if len(args) != 1:
        raise ParseError("cancel requires exactly 1 argument: <session_id>")
    return CancelCommand(session_id=args[0])
