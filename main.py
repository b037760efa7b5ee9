# main.py
"""CLI entry point for the Cadence story services."""

from __future__ import annotations

import argparse
import sys

from orchestration.cli_runner import run


def _add_story_chapter(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("story", help="Story id")
    parser.add_argument("--chapter", type=int, required=True, help="Chapter number")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cadence")
    parser.add_argument(
        "--backend",
        choices=["memory", "neo4j"],
        default=None,
        help="Storage backend (defaults to STORAGE_BACKEND)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    memory = sub.add_parser("memory", help="Print the context package for a chapter")
    _add_story_chapter(memory)

    for name, help_text in (
        ("enhance", "Enhance a chapter brief for the active pacing stage"),
        ("advance", "Judge stage completion and advance pacing"),
    ):
        command = sub.add_parser(name, help=help_text)
        _add_story_chapter(command)
        brief = command.add_mutually_exclusive_group(required=True)
        brief.add_argument("--brief", help="Brief text")
        brief.add_argument("--brief-file", help="Read the brief from a file")

    for name, help_text in (
        ("summarize", "Generate and store a chapter summary"),
        ("revise", "Store new chapter text and cascade a rewrite"),
    ):
        command = sub.add_parser(name, help=help_text)
        _add_story_chapter(command)
        source = command.add_mutually_exclusive_group(required=name == "revise")
        source.add_argument("--text", help="Chapter text")
        source.add_argument("--file", help="Read chapter text from a file")

    status = sub.add_parser("pacing-status", help="Show pacing progress")
    status.add_argument("story")
    reset = sub.add_parser("reset-pacing", help="Delete pacing progress")
    reset.add_argument("story")

    mine = sub.add_parser("mine", help="Mine vocabulary terms for a category")
    mine.add_argument("category")
    mine.add_argument("--loops", type=int, default=10)
    mine.add_argument("--batch-size", type=int, default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and run the requested command."""
    args = build_parser().parse_args(argv)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
