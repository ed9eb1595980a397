"""Line sources for the interactive loop.

read_line() returns the next line or raises one of EndOfInput,
Interrupted (both end the loop) or LineSourceError (the loop logs it
and asks again).
"""
from __future__ import annotations

from rich.console import Console


class EndOfInput(Exception):
    """The input stream is exhausted."""


class Interrupted(Exception):
    """The user interrupted input (Ctrl-C)."""


class LineSourceError(Exception):
    """A transient failure reading a line."""


class ConsoleLineSource:
    """Reads lines from the terminal through a rich Console."""

    def __init__(self, console: Console, prompt: str = ">> ") -> None:
        self._console = console
        self._prompt = prompt

    def read_line(self) -> str:
        try:
            return self._console.input(self._prompt)
        except EOFError as exc:
            raise EndOfInput() from exc
        except KeyboardInterrupt as exc:
            raise Interrupted() from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise LineSourceError(str(exc)) from exc
