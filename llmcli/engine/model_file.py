"""Model file format — JSON header, vocabulary and tensors.

Layout:
    {
      "format": "llmcli-model",
      "version": 1,
      "hyperparameters": {"n_vocab": 3, "file_type": "f32"},
      "vocabulary": ["<s>", "</s>", " hello"],
      "tensors": {
        "output.weight": {"dims": [3, 3], "element_type": "f32", "data": [...]},
        "norm.bias": {"dims": [3], "element_type": "f32", "data": [...]}
      }
    }

Quantized tensors replace ``data`` with ``blocks``: one entry per 32
elements holding the scale ``d`` (plus ``m`` for q4_1) and 4-bit
values ``qs``.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from llmcli.shared.services.durable_write import atomic_write_bytes

from .models import ElementType

logger = logging.getLogger(__name__)

FORMAT_NAME = "llmcli-model"
FORMAT_VERSION = 1
QK = 32


@dataclass
class Tensor:
    """A named tensor; ``data`` is always dequantized f32 values."""
    name: str
    dims: list[int]
    element_type: ElementType = ElementType.F32
    data: list[float] = field(default_factory=list)
    blocks: list[dict[str, Any]] | None = None

    @property
    def n_elements(self) -> int:
        return math.prod(self.dims)

    @property
    def storage_size(self) -> int:
        return self.element_type.storage_size(self.n_elements)


@dataclass
class ModelFile:
    hyperparameters: dict[str, Any]
    vocabulary: list[str]
    tensors: dict[str, Tensor]


def quantize_block(
    values: list[float], element_type: ElementType,
) -> dict[str, Any]:
    """Quantize up to QK values into one 4-bit block."""
    if element_type == ElementType.Q4_0:
        amax = max((abs(v) for v in values), default=0.0)
        d = amax / 7.0
        inv = 1.0 / d if d else 0.0
        qs = [min(15, max(0, round(v * inv) + 8)) for v in values]
        return {"d": d, "qs": qs}
    if element_type == ElementType.Q4_1:
        lo = min(values, default=0.0)
        hi = max(values, default=0.0)
        d = (hi - lo) / 15.0
        inv = 1.0 / d if d else 0.0
        qs = [min(15, max(0, round((v - lo) * inv))) for v in values]
        return {"d": d, "m": lo, "qs": qs}
    raise ValueError(f"Cannot quantize to {element_type.value}")


def dequantize_block(
    block: dict[str, Any], element_type: ElementType,
) -> list[float]:
    d = float(block["d"])
    if element_type == ElementType.Q4_0:
        return [(q - 8) * d for q in block["qs"]]
    if element_type == ElementType.Q4_1:
        m = float(block["m"])
        return [q * d + m for q in block["qs"]]
    raise ValueError(f"Cannot dequantize {element_type.value}")


def _tensor_from_dict(name: str, raw: dict[str, Any]) -> Tensor:
    element_type = ElementType(raw.get("element_type", "f32"))
    dims = [int(d) for d in raw["dims"]]
    if element_type in (ElementType.F32, ElementType.F16):
        return Tensor(name, dims, element_type, [float(v) for v in raw["data"]])
    blocks = list(raw["blocks"])
    data: list[float] = []
    for block in blocks:
        data.extend(dequantize_block(block, element_type))
    return Tensor(name, dims, element_type, data, blocks)


def _tensor_to_dict(tensor: Tensor) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "dims": tensor.dims,
        "element_type": tensor.element_type.value,
    }
    if tensor.blocks is not None:
        raw["blocks"] = tensor.blocks
    else:
        raw["data"] = tensor.data
    return raw


def read_header(path: Path) -> dict[str, Any]:
    """Parse the file and validate its format marker."""
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"unreadable model file: {exc}") from exc
    if raw.get("format") != FORMAT_NAME:
        raise ValueError(f"not an {FORMAT_NAME} file")
    if raw.get("version") != FORMAT_VERSION:
        raise ValueError(f"unsupported version {raw.get('version')}")
    return raw


def tensors_from_raw(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return dict(raw.get("tensors") or {})


def load_tensor(name: str, raw: dict[str, Any]) -> Tensor:
    return _tensor_from_dict(name, raw)


def read_model_file(path: Path) -> ModelFile:
    raw = read_header(path)
    tensors = {
        name: _tensor_from_dict(name, t)
        for name, t in tensors_from_raw(raw).items()
    }
    return ModelFile(
        hyperparameters=dict(raw.get("hyperparameters") or {}),
        vocabulary=list(raw["vocabulary"]),
        tensors=tensors,
    )


def write_model_file(path: Path, model_file: ModelFile) -> None:
    payload = {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "hyperparameters": model_file.hyperparameters,
        "vocabulary": model_file.vocabulary,
        "tensors": {
            name: _tensor_to_dict(t) for name, t in model_file.tensors.items()
        },
    }
    atomic_write_bytes(path, json.dumps(payload).encode("utf-8"))
    logger.debug("Wrote model file %s (%d tensors)", path, len(model_file.tensors))
