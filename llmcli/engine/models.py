"""Core types for the inference engine.

The Model ABC is the capability the session controller consumes: a
vocabulary plus a way to advance and sample from a session's cache.
Concrete engines (see demo_model.py) implement it.
"""
from __future__ import annotations

import abc
import random
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import InferenceParameters
    from .session import InferenceSession

TokenId = int
# (piece text, token id) as produced by tokenization
TokenPiece = tuple[str, TokenId]


class ElementType(str, Enum):
    """Storage type of a tensor's elements."""
    F32 = "f32"
    F16 = "f16"
    Q4_0 = "q4_0"
    Q4_1 = "q4_1"

    @property
    def block_size(self) -> int:
        return 32 if self in (ElementType.Q4_0, ElementType.Q4_1) else 1

    @property
    def bytes_per_block(self) -> int:
        return {
            ElementType.F32: 4,
            ElementType.F16: 2,
            ElementType.Q4_0: 20,
            ElementType.Q4_1: 24,
        }[self]

    def storage_size(self, n_elements: int) -> int:
        """Bytes needed to store *n_elements* of this type."""
        n_blocks = -(-n_elements // self.block_size)
        return n_blocks * self.bytes_per_block


class QuantizeTarget(str, Enum):
    """Element types a model can be quantized to."""
    Q4_0 = "q4_0"
    Q4_1 = "q4_1"

    @property
    def element_type(self) -> ElementType:
        return ElementType(self.value)


class Model(abc.ABC):
    """Abstract text-generation engine.

    The engine owns the meaning of ``session.memory``; the session only
    stores it and copies it on clone.
    """

    @property
    @abc.abstractmethod
    def fingerprint(self) -> str:
        """Stable identifier of the weights, recorded in snapshots."""

    @property
    @abc.abstractmethod
    def eot_token_id(self) -> TokenId:
        """Token id that ends generation."""

    @property
    @abc.abstractmethod
    def bot_token_id(self) -> TokenId:
        """Token id fed at the very start of a session."""

    @abc.abstractmethod
    def tokenize(self, text: str, bos: bool) -> list[TokenPiece]:
        """Split *text* into tokens.

        Raises TokenizationFailedError when the text cannot be encoded.
        """

    @abc.abstractmethod
    def token_text(self, token_id: TokenId) -> str:
        """Text piece for a single token id."""

    @abc.abstractmethod
    def evaluate(
        self,
        session: InferenceSession,
        params: InferenceParameters,
        tokens: list[TokenId],
    ) -> None:
        """Advance the session's cache over *tokens*."""

    @abc.abstractmethod
    def sample(
        self,
        session: InferenceSession,
        params: InferenceParameters,
        rng: random.Random,
    ) -> TokenId:
        """Choose the next token given the session's current cache."""
