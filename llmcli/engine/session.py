"""Inference session — accumulated context plus the engine's cache.

A session is mutated in place by feed_prompt() and infer_next_token().
clone() returns a fully independent deep copy, which is what turn
rollback relies on.
"""
from __future__ import annotations

import copy
import logging
import random
from dataclasses import dataclass, field
from typing import Any

from .config import InferenceParameters, SessionParameters, TokenSink
from .errors import ContextFullError, EndOfTextError, UserCallbackError
from .models import Model, TokenId

logger = logging.getLogger(__name__)


def _emit(callback: TokenSink, piece: str) -> None:
    try:
        callback(piece)
    except Exception as exc:
        raise UserCallbackError(exc) from exc


@dataclass
class InferenceSession:
    """Tokens seen so far and the engine-owned ``memory`` cache."""

    params: SessionParameters = field(default_factory=SessionParameters)
    tokens: list[TokenId] = field(default_factory=list)
    n_past: int = 0
    memory: dict[str, Any] = field(default_factory=dict)

    @property
    def remaining_context(self) -> int:
        return self.params.context_size - self.n_past

    def clone(self) -> InferenceSession:
        return copy.deepcopy(self)

    def feed_prompt(
        self,
        model: Model,
        params: InferenceParameters,
        prompt: str,
        callback: TokenSink,
    ) -> None:
        """Tokenize *prompt* and evaluate it into the session.

        Tokens that fit are fed before ContextFullError is raised for
        the remainder.
        """
        pieces = model.tokenize(prompt, self.n_past == 0)
        overflow = len(pieces) > self.remaining_context
        if overflow:
            logger.debug(
                "Prompt of %d tokens exceeds remaining context %d",
                len(pieces), self.remaining_context,
            )
            pieces = pieces[:max(self.remaining_context, 0)]

        batch_size = max(params.batch_size, 1)
        for start in range(0, len(pieces), batch_size):
            batch = pieces[start:start + batch_size]
            ids = [tid for _, tid in batch]
            model.evaluate(self, params, ids)
            self.tokens.extend(ids)
            self.n_past += len(ids)
            for piece, _ in batch:
                _emit(callback, piece)

        if overflow:
            raise ContextFullError(self.n_past, self.params.context_size)

    def infer_next_token(
        self,
        model: Model,
        params: InferenceParameters,
        rng: random.Random,
    ) -> str:
        """Sample and evaluate one token, returning its text.

        Raises EndOfTextError after evaluating the end-of-text token.
        """
        if self.remaining_context <= 0:
            raise ContextFullError(self.n_past, self.params.context_size)

        token_id = model.sample(self, params, rng)
        model.evaluate(self, params, [token_id])
        self.tokens.append(token_id)
        self.n_past += 1

        if token_id == model.eot_token_id:
            raise EndOfTextError()
        return model.token_text(token_id)

    def inference_with_prompt(
        self,
        model: Model,
        params: InferenceParameters,
        prompt: str,
        max_tokens: int | None,
        rng: random.Random,
        callback: TokenSink,
    ) -> None:
        """Feed *prompt*, then generate up to *max_tokens* tokens.

        ``max_tokens`` of None or 0 generates until end of text or a
        full context.
        """
        if params.play_back_previous_tokens:
            for token_id in self.tokens:
                _emit(callback, model.token_text(token_id))

        self.feed_prompt(model, params, prompt, lambda _piece: None)

        produced = 0
        while not max_tokens or produced < max_tokens:
            try:
                piece = self.infer_next_token(model, params, rng)
            except EndOfTextError:
                break
            _emit(callback, piece)
            produced += 1
        logger.debug("Generated %d tokens (n_past=%d)", produced, self.n_past)

    def export_state(self) -> dict[str, Any]:
        return {
            "tokens": list(self.tokens),
            "n_past": self.n_past,
            "memory": copy.deepcopy(self.memory),
        }

    @classmethod
    def from_state(
        cls, state: dict[str, Any], params: SessionParameters,
    ) -> InferenceSession:
        return cls(
            params=params,
            tokens=[int(t) for t in state["tokens"]],
            n_past=int(state["n_past"]),
            memory=dict(state.get("memory") or {}),
        )
