"""Terminal output — token streaming and the feed spinner."""
from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Iterator

from rich.console import Console


class ConsoleTokenSink:
    """Writes each produced piece immediately, without markup."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def __call__(self, piece: str) -> None:
        self._console.print(
            piece, end="", markup=False, highlight=False, soft_wrap=True,
        )
        self._console.file.flush()

    def end_stream(self) -> None:
        self._console.print()


@contextmanager
def feeding_spinner(console: Console) -> Iterator[None]:
    """Show a spinner while a prompt is fed; no-op off a terminal."""
    if not console.is_terminal:
        yield
        return
    with console.status("", spinner="dots2"):
        yield
