"""CLI entry point for acpsessions.

Usage:
    python -m acpsessions history [conversation.yaml | task-id]
    python -m acpsessions replay events.jsonl
    python -m acpsessions diff old.txt new.txt
"""

import sys


def main() -> int:
    """Main entry point for the acpsessions CLI."""
    from acpsessions.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
