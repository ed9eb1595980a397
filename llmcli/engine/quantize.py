"""Quantize a model file's weight matrices to 4-bit blocks."""
from __future__ import annotations

import logging
from pathlib import Path

from .errors import QuantizeError
from .model_file import (
    QK,
    ModelFile,
    Tensor,
    load_tensor,
    quantize_block,
    read_header,
    tensors_from_raw,
    write_model_file,
)
from .models import ElementType, QuantizeTarget
from .progress import (
    Finished,
    HyperparametersLoaded,
    ProgressCallback,
    TensorLoading,
    TensorQuantized,
    TensorQuantizing,
    TensorSkipped,
)

logger = logging.getLogger(__name__)

HISTORY_BUCKETS = 16


def _should_quantize(tensor: Tensor) -> bool:
    return (
        tensor.name.endswith("weight")
        and len(tensor.dims) == 2
        and tensor.element_type == ElementType.F32
    )


def _normalize(counts: list[int]) -> tuple[float, ...]:
    total = sum(counts)
    if not total:
        return tuple(0.0 for _ in counts)
    return tuple(c / total for c in counts)


def quantize_tensor(
    tensor: Tensor, element_type: ElementType,
) -> tuple[Tensor, list[int]]:
    """Return the quantized tensor and its 16-bucket value histogram."""
    counts = [0] * HISTORY_BUCKETS
    blocks = []
    for start in range(0, len(tensor.data), QK):
        block = quantize_block(tensor.data[start:start + QK], element_type)
        for q in block["qs"]:
            counts[q] += 1
        blocks.append(block)
    quantized = Tensor(
        name=tensor.name,
        dims=list(tensor.dims),
        element_type=element_type,
        data=[],
        blocks=blocks,
    )
    return quantized, counts


def quantize(
    source: str | Path,
    destination: str | Path,
    target: QuantizeTarget,
    progress_callback: ProgressCallback,
) -> None:
    """Read *source*, quantize eligible tensors, write *destination*.

    Events are delivered synchronously to *progress_callback*.
    Finished is emitted only when the destination was written.
    """
    source = Path(source)
    destination = Path(destination)
    element_type = target.element_type

    try:
        raw = read_header(source)
    except ValueError as exc:
        raise QuantizeError(f"{source}: {exc}") from exc
    hyperparameters = dict(raw.get("hyperparameters") or {})
    hyperparameters["file_type"] = element_type.value
    progress_callback(HyperparametersLoaded())

    total_original = 0
    total_reduced = 0
    total_counts = [0] * HISTORY_BUCKETS
    tensors: dict[str, Tensor] = {}

    for name, raw_tensor in tensors_from_raw(raw).items():
        try:
            tensor = load_tensor(name, raw_tensor)
        except (KeyError, ValueError) as exc:
            raise QuantizeError(f"tensor {name}: {exc}") from exc
        progress_callback(TensorLoading(
            name=name,
            dims=tuple(tensor.dims),
            element_type=tensor.element_type.value,
            n_elements=tensor.n_elements,
        ))

        original_size = tensor.storage_size
        total_original += original_size
        if not _should_quantize(tensor):
            tensors[name] = tensor
            total_reduced += original_size
            progress_callback(TensorSkipped(name=name, size=original_size))
            continue

        progress_callback(TensorQuantizing(name=name))
        quantized, counts = quantize_tensor(tensor, element_type)
        reduced_size = quantized.storage_size
        tensors[name] = quantized
        total_reduced += reduced_size
        total_counts = [a + b for a, b in zip(total_counts, counts)]
        progress_callback(TensorQuantized(
            name=name,
            original_size=original_size,
            reduced_size=reduced_size,
            history=_normalize(counts),
        ))

    try:
        write_model_file(destination, ModelFile(
            hyperparameters=hyperparameters,
            vocabulary=list(raw.get("vocabulary") or []),
            tensors=tensors,
        ))
    except OSError as exc:
        raise QuantizeError(f"cannot write {destination}: {exc}") from exc

    logger.debug("Quantized %s -> %s as %s", source, destination, target.value)
    progress_callback(Finished(
        original_size=total_original,
        reduced_size=total_reduced,
        history=_normalize(total_counts),
    ))
