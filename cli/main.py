"""CLI entry point."""

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

from cli.commands import dispatch_command
from cli.constants import HELP_TEXT
from cli.models import CommandRequest, HelpCommand
from cli.parser import ParseError, parse_command
from common.logging_config import setup_logging
from uploader.api_client import UploadApiClient
from uploader.config import DEFAULT_CONFIG_PATH, Config


def _extract_flags(args: list[str]) -> tuple[list[str], bool, Path]:
    """Strip --debug and --config PATH from the argument list."""
    debug = False
    config_path = DEFAULT_CONFIG_PATH
    remaining = []
    index = 0

    while index < len(args):
        arg = args[index]
        if arg == '--debug':
            debug = True
        elif arg == '--config':
            if index + 1 >= len(args):
                raise ParseError("--config requires a path")
            config_path = Path(args[index + 1])
            index += 1
        else:
            remaining.append(arg)
        index += 1

    return remaining, debug, config_path


async def _run(cmd: CommandRequest, config: Config) -> str:
    async with UploadApiClient(config) as client:
        return await dispatch_command(cmd, client, config)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for CLI."""
    args = list(sys.argv[1:] if argv is None else argv)

    try:
        args, debug, config_path = _extract_flags(args)
        cmd = parse_command(args)
    except ParseError as e:
        print(f"Error: {e}\n")
        print(HELP_TEXT)
        return 2

    log_level = 'DEBUG' if debug else os.getenv('LOG_LEVEL', 'WARNING')
    logger = setup_logging('cli', log_level=log_level)
    setup_logging('uploader', log_level=log_level)
    if debug:
        logger.info("Debug logging enabled")

    if isinstance(cmd, HelpCommand):
        print(HELP_TEXT)
        return 0

    config = Config(config_path)
    logger.info(f"CLI starting [command={cmd.command}]")
    try:
        output = asyncio.run(_run(cmd, config))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("CLI exiting")

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
