"""Terminal adapters — line input and token output."""
from .line_source import (
    ConsoleLineSource,
    EndOfInput,
    Interrupted,
    LineSourceError,
)
from .output import ConsoleTokenSink, feeding_spinner

__all__ = [
    "ConsoleLineSource",
    "ConsoleTokenSink",
    "EndOfInput",
    "Interrupted",
    "LineSourceError",
    "feeding_spinner",
]
