"""Progress events emitted by quantize().

A closed set of phases, one dataclass per phase. The producer emits
Finished exactly once, as its last event. Consumers render or record
events; they never steer the transform.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class HyperparametersLoaded:
    event_type: str = "hyperparameters_loaded"


@dataclass(frozen=True)
class TensorLoading:
    name: str
    dims: tuple[int, ...]
    element_type: str
    n_elements: int
    event_type: str = "tensor_loading"


@dataclass(frozen=True)
class TensorQuantizing:
    name: str
    event_type: str = "tensor_quantizing"


@dataclass(frozen=True)
class TensorQuantized:
    name: str
    original_size: int
    reduced_size: int
    history: tuple[float, ...] = field(default_factory=tuple)
    event_type: str = "tensor_quantized"


@dataclass(frozen=True)
class TensorSkipped:
    name: str
    size: int
    event_type: str = "tensor_skipped"


@dataclass(frozen=True)
class Finished:
    original_size: int
    reduced_size: int
    history: tuple[float, ...] = field(default_factory=tuple)
    event_type: str = "finished"


QuantizeProgress = Union[
    HyperparametersLoaded,
    TensorLoading,
    TensorQuantizing,
    TensorQuantized,
    TensorSkipped,
    Finished,
]

ProgressCallback = Callable[[QuantizeProgress], None]


def _fmt_history(history: tuple[float, ...]) -> str:
    return "[" + ", ".join(f"{h:.3f}" for h in history) + "]"


def describe_progress(event: QuantizeProgress) -> str:
    """One human-readable line per event."""
    if isinstance(event, HyperparametersLoaded):
        return "Loaded hyperparameters"
    if isinstance(event, TensorLoading):
        return (
            f"Loading tensor `{event.name}` ({event.n_elements} "
            f"({list(event.dims)}) {event.element_type} elements)"
        )
    if isinstance(event, TensorQuantizing):
        return f"Quantizing tensor `{event.name}`"
    if isinstance(event, TensorQuantized):
        return (
            f"Quantized tensor `{event.name}` from {event.original_size} "
            f"to {event.reduced_size} bytes ({_fmt_history(event.history)})"
        )
    if isinstance(event, TensorSkipped):
        return f"Skipped tensor `{event.name}` ({event.size} bytes)"
    if isinstance(event, Finished):
        return (
            f"Finished quantization from {event.original_size} to "
            f"{event.reduced_size} bytes ({_fmt_history(event.history)})"
        )
    raise AssertionError(f"unhandled progress event: {event!r}")
