"""CLI constants."""

GREEN = "\033[32m"
RESET = "\033[0m"

PRIORITY_FLAG = "--priority"

HELP_TEXT = """Usage: resumable-upload [--debug] [--config PATH] <command> [args]

Commands:
  upload <file>... [--priority N]     Queue files and upload them (priority 1-10, default 5)
  tasks                               List unfinished upload sessions on the server
  cancel <session_id>                 Discard an unfinished upload session on the server
  help                                Show this help

Examples:
  resumable-upload upload video.mp4 backup.tar --priority 8
  resumable-upload tasks
  resumable-upload cancel 6f1c2a"""
