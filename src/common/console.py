# ABOUTME: Provides the shared Rich console used for tagged progress and warning output.
# ABOUTME: Output goes to stderr and can be silenced with CHALLENGE_REC_QUIET=true.

import os

from rich.console import Console
from rich.markup import escape

console = Console(
    stderr=True,
    quiet=os.environ.get("CHALLENGE_REC_QUIET", "false").lower() == "true",
)


def log(tag: str, message: str) -> None:
    console.log(escape(f"[{tag}] {message}"))


def warn(tag: str, message: str) -> None:
    console.log(f"[yellow]{escape(f'[{tag}] {message}')}[/yellow]")
