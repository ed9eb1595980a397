"""Bigram reference engine.

A small, fully deterministic text-generation engine: each word is a
token and the next-token distribution depends only on the previous
token. It implements the Model interface end to end so sessions,
snapshots and quantization can run without native weights.
"""
from __future__ import annotations

import hashlib
import json
import logging
import math
import random
from collections import Counter
from pathlib import Path

from .config import InferenceParameters
from .errors import ModelLoadError, TokenizationFailedError
from .model_file import ModelFile, Tensor, read_model_file, write_model_file
from .models import Model, TokenId, TokenPiece
from .session import InferenceSession

logger = logging.getLogger(__name__)

BOS_TOKEN = "<s>"
EOS_TOKEN = "</s>"
OUTPUT_TENSOR = "output.weight"
BIAS_TENSOR = "norm.bias"


class BigramModel(Model):
    """Word-level bigram model backed by a ModelFile."""

    def __init__(self, model_file: ModelFile) -> None:
        self._file = model_file
        self._vocab = list(model_file.vocabulary)
        self._ids = {piece: i for i, piece in enumerate(self._vocab)}
        self._n_vocab = len(self._vocab)
        try:
            self._weights = model_file.tensors[OUTPUT_TENSOR].data
            self._bias = model_file.tensors[BIAS_TENSOR].data
        except KeyError as exc:
            raise ValueError(f"missing tensor {exc}") from exc
        if len(self._weights) < self._n_vocab * self._n_vocab:
            raise ValueError(f"{OUTPUT_TENSOR} is smaller than n_vocab^2")
        digest = hashlib.sha256()
        digest.update(json.dumps(self._vocab).encode("utf-8"))
        for name in sorted(model_file.tensors):
            tensor = model_file.tensors[name]
            digest.update(
                f"{name}:{tensor.dims}:{tensor.element_type.value}".encode()
            )
        self._fingerprint = digest.hexdigest()[:16]

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def eot_token_id(self) -> TokenId:
        return self._ids[EOS_TOKEN]

    @property
    def bot_token_id(self) -> TokenId:
        return self._ids[BOS_TOKEN]

    @property
    def n_vocab(self) -> int:
        return self._n_vocab

    def tokenize(self, text: str, bos: bool) -> list[TokenPiece]:
        pieces: list[TokenPiece] = []
        if bos:
            pieces.append(("", self.bot_token_id))
        for word in text.split():
            piece = f" {word}"
            token_id = self._ids.get(piece)
            if token_id is None:
                raise TokenizationFailedError(text, f"unknown word {word!r}")
            pieces.append((piece, token_id))
        return pieces

    def token_text(self, token_id: TokenId) -> str:
        if token_id in (self.bot_token_id, self.eot_token_id):
            return ""
        return self._vocab[token_id]

    def evaluate(
        self,
        session: InferenceSession,
        params: InferenceParameters,
        tokens: list[TokenId],
    ) -> None:
        if not tokens:
            return
        session.memory["last_token"] = tokens[-1]
        session.memory["n_evaluated"] = (
            session.memory.get("n_evaluated", 0) + len(tokens)
        )

    def logits(self, session: InferenceSession) -> list[float]:
        """Raw next-token scores for the session's last token."""
        last = session.memory.get("last_token", self.bot_token_id)
        row = self._weights[last * self._n_vocab:(last + 1) * self._n_vocab]
        return [w + 0.1 * b for w, b in zip(row, self._bias)]

    def sample(
        self,
        session: InferenceSession,
        params: InferenceParameters,
        rng: random.Random,
    ) -> TokenId:
        logits = self.logits(session)
        logits[self.bot_token_id] = -math.inf

        last_n = session.params.repeat_last_n
        recent = session.tokens[-last_n:] if last_n > 0 else []
        for token_id in set(recent):
            if token_id == self.eot_token_id:
                continue
            if logits[token_id] > 0:
                logits[token_id] /= params.repeat_penalty
            else:
                logits[token_id] *= params.repeat_penalty

        if params.temperature <= 0:
            return max(range(self._n_vocab), key=lambda i: logits[i])

        ranked = sorted(
            range(self._n_vocab), key=lambda i: logits[i], reverse=True,
        )
        if params.top_k > 0:
            ranked = ranked[:params.top_k]
        top = logits[ranked[0]]
        weights = [
            math.exp((logits[i] - top) / params.temperature) for i in ranked
        ]
        total = sum(weights)
        probs = [w / total for w in weights]

        kept: list[int] = []
        kept_probs: list[float] = []
        cumulative = 0.0
        for token_id, p in zip(ranked, probs):
            kept.append(token_id)
            kept_probs.append(p)
            cumulative += p
            if cumulative >= params.top_p:
                break
        return rng.choices(kept, weights=kept_probs, k=1)[0]


def build_model_file(corpus: str, max_vocab: int = 512) -> ModelFile:
    """Estimate bigram log-weights from a text corpus.

    Each non-empty line is a sequence framed by <s> and </s>. Only the
    *max_vocab* most frequent words enter the vocabulary; pairs
    touching other words are dropped.
    """
    lines = [line.split() for line in corpus.splitlines() if line.strip()]
    counts = Counter(word for words in lines for word in words)
    kept_words = sorted(w for w, _ in counts.most_common(max_vocab))
    vocabulary = [BOS_TOKEN, EOS_TOKEN] + [f" {w}" for w in kept_words]
    ids = {piece: i for i, piece in enumerate(vocabulary)}
    n_vocab = len(vocabulary)

    pair_counts = [[0] * n_vocab for _ in range(n_vocab)]
    unigram = [0] * n_vocab
    for words in lines:
        seq = [ids[BOS_TOKEN]]
        seq.extend(ids[f" {w}"] for w in words if f" {w}" in ids)
        seq.append(ids[EOS_TOKEN])
        for prev, nxt in zip(seq, seq[1:]):
            pair_counts[prev][nxt] += 1
        for token_id in seq:
            unigram[token_id] += 1

    alpha = 0.01
    weights: list[float] = []
    for row in pair_counts:
        denom = sum(row) + alpha * n_vocab
        weights.extend(math.log((c + alpha) / denom) for c in row)
    total = sum(unigram) + alpha * n_vocab
    bias = [math.log((c + alpha) / total) for c in unigram]

    return ModelFile(
        hyperparameters={"n_vocab": n_vocab, "file_type": "f32"},
        vocabulary=vocabulary,
        tensors={
            OUTPUT_TENSOR: Tensor(OUTPUT_TENSOR, [n_vocab, n_vocab], data=weights),
            BIAS_TENSOR: Tensor(BIAS_TENSOR, [n_vocab], data=bias),
        },
    )


def convert_corpus(source: Path, destination: Path, max_vocab: int = 512) -> ModelFile:
    """Build a model file from the text corpus at *source*."""
    corpus = source.read_text(encoding="utf-8")
    model_file = build_model_file(corpus, max_vocab=max_vocab)
    write_model_file(destination, model_file)
    logger.info(
        "Converted %s -> %s (%d vocabulary entries)",
        source, destination, len(model_file.vocabulary),
    )
    return model_file


def load_model(path: str | Path) -> BigramModel:
    """Load a model file; a ``.txt`` path is converted in memory."""
    path = Path(path)
    if not path.exists():
        raise ModelLoadError(str(path), "file not found")
    try:
        if path.suffix == ".txt":
            model_file = build_model_file(path.read_text(encoding="utf-8"))
        else:
            model_file = read_model_file(path)
        model = BigramModel(model_file)
    except (OSError, ValueError, KeyError) as exc:
        raise ModelLoadError(str(path), str(exc)) from exc
    logger.info(
        "Loaded model %s (n_vocab=%d, fingerprint=%s)",
        path, model.n_vocab, model.fingerprint,
    )
    return model
