"""Terminal output helpers for the fcissues CLI."""

from __future__ import annotations

import os
import sys
from collections.abc import Sequence
from typing import TextIO


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"


def _supports_color(stream: TextIO | None = None) -> bool:
    """Colors only on a real TTY, and never with NO_COLOR or TERM=dumb."""
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR"):
        return False
    if not hasattr(stream, "isatty") or not stream.isatty():
        return False
    return os.environ.get("TERM") != "dumb"


def colorize(text: str, color: str, bold: bool = False, stream: TextIO | None = None) -> str:
    if not _supports_color(stream):
        return text
    prefix = (Colors.BOLD if bold else "") + color
    return f"{prefix}{text}{Colors.RESET}"


def print_success(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    print(colorize("✓", Colors.GREEN, bold=True, stream=stream) + " " + message, file=stream)


def print_error(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stderr
    print(colorize("✗", Colors.RED, bold=True, stream=stream) + " " + message, file=stream)


def print_table(
    headers: Sequence[str], rows: Sequence[Sequence[str]], stream: TextIO | None = None
) -> None:
    """Left-aligned columns; the last column is never padded."""
    stream = stream or sys.stdout
    widths = [
        max([len(h)] + [len(row[n]) for row in rows]) for n, h in enumerate(headers[:-1])
    ]

    def _line(cells: Sequence[str]) -> str:
        padded = [c.ljust(w) for c, w in zip(cells, widths)]
        return "  ".join([*padded, cells[-1]])

    print(colorize(_line(headers), Colors.CYAN, bold=True, stream=stream), file=stream)
    for row in rows:
        print(_line(row), file=stream)


def print_summary_box(
    title: str, items: Sequence[tuple[str, str | int]], stream: TextIO | None = None
) -> None:
    """Print a key/value block; used for single-issue details."""
    stream = stream or sys.stdout
    max_key_len = max((len(k) for k, _ in items), default=0)

    print(colorize(title, Colors.CYAN, bold=True, stream=stream), file=stream)
    print(colorize("─" * 60, Colors.DIM, stream=stream), file=stream)
    for key, value in items:
        print(f"  {key.ljust(max_key_len)}  {value}", file=stream)
    print(colorize("─" * 60, Colors.DIM, stream=stream), file=stream)


__all__ = [
    "Colors",
    "colorize",
    "print_error",
    "print_success",
    "print_summary_box",
    "print_table",
]
