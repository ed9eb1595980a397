"""InferenceSession against a scripted model."""

from __future__ import annotations

import random

import pytest

from llmcli.engine.config import InferenceParameters, SessionParameters
from llmcli.engine.errors import (
    ContextFullError,
    EndOfTextError,
    TokenizationFailedError,
    UserCallbackError,
)
from llmcli.engine.models import Model
from llmcli.engine.session import InferenceSession


class ScriptedModel(Model):
    """Vocabulary of single letters; sample() replays a fixed script."""

    VOCAB = ["<s>", "</s>", " a", " b", " c"]

    def __init__(self, script: list[int] | None = None) -> None:
        self.script = list(script or [])
        self.evaluated: list[list[int]] = []

    @property
    def fingerprint(self) -> str:
        return "scripted"

    @property
    def eot_token_id(self) -> int:
        return 1

    @property
    def bot_token_id(self) -> int:
        return 0

    def tokenize(self, text, bos):
        pieces = [("", 0)] if bos else []
        for word in text.split():
            if f" {word}" not in self.VOCAB:
                raise TokenizationFailedError(text, word)
            pieces.append((f" {word}", self.VOCAB.index(f" {word}")))
        return pieces

    def token_text(self, token_id):
        return "" if token_id < 2 else self.VOCAB[token_id]

    def evaluate(self, session, params, tokens):
        self.evaluated.append(list(tokens))
        session.memory.setdefault("history", []).extend(tokens)

    def sample(self, session, params, rng):
        return self.script.pop(0) if self.script else 2


PARAMS = InferenceParameters(batch_size=2)


def test_feed_prompt_batches_and_reports_pieces() -> None:
    model = ScriptedModel()
    session = InferenceSession(SessionParameters(context_size=16))
    seen: list[str] = []

    session.feed_prompt(model, PARAMS, "a b c", seen.append)

    assert session.tokens == [0, 2, 3, 4]
    assert session.n_past == 4
    assert model.evaluated == [[0, 2], [3, 4]]
    assert seen == ["", " a", " b", " c"]


def test_bos_only_on_empty_session() -> None:
    model = ScriptedModel()
    session = InferenceSession(SessionParameters(context_size=16))
    session.feed_prompt(model, PARAMS, "a", lambda _: None)
    session.feed_prompt(model, PARAMS, "b", lambda _: None)
    assert session.tokens == [0, 2, 3]


def test_feed_prompt_overflow_feeds_what_fits() -> None:
    model = ScriptedModel()
    session = InferenceSession(SessionParameters(context_size=3))

    with pytest.raises(ContextFullError):
        session.feed_prompt(model, PARAMS, "a b c", lambda _: None)

    assert session.tokens == [0, 2, 3]
    assert session.remaining_context == 0


def test_unknown_word_fails_tokenization_without_mutation() -> None:
    model = ScriptedModel()
    session = InferenceSession(SessionParameters(context_size=16))
    with pytest.raises(TokenizationFailedError):
        session.feed_prompt(model, PARAMS, "a zebra", lambda _: None)
    assert session.tokens == []


def test_callback_failure_is_wrapped() -> None:
    model = ScriptedModel()
    session = InferenceSession(SessionParameters(context_size=16))

    def boom(_piece: str) -> None:
        raise RuntimeError("sink closed")

    with pytest.raises(UserCallbackError) as info:
        session.feed_prompt(model, PARAMS, "a", boom)
    assert isinstance(info.value.error, RuntimeError)


def test_infer_next_token_raises_on_end_of_text() -> None:
    model = ScriptedModel(script=[1])
    session = InferenceSession(SessionParameters(context_size=16))
    with pytest.raises(EndOfTextError):
        session.infer_next_token(model, PARAMS, random.Random(0))
    assert session.tokens == [1]


def test_inference_stops_at_max_tokens() -> None:
    model = ScriptedModel(script=[3, 4, 3, 4])
    session = InferenceSession(SessionParameters(context_size=16))
    out: list[str] = []

    session.inference_with_prompt(model, PARAMS, "a", 3, random.Random(0), out.append)

    assert out == [" b", " c", " b"]
    assert session.tokens == [0, 2, 3, 4, 3]


def test_inference_stops_quietly_at_end_of_text() -> None:
    model = ScriptedModel(script=[3, 1, 4])
    session = InferenceSession(SessionParameters(context_size=16))
    out: list[str] = []

    session.inference_with_prompt(model, PARAMS, "a", 10, random.Random(0), out.append)

    assert out == [" b"]


def test_unbounded_inference_ends_at_context_full() -> None:
    model = ScriptedModel()
    session = InferenceSession(SessionParameters(context_size=5))
    out: list[str] = []

    with pytest.raises(ContextFullError):
        session.inference_with_prompt(
            model, PARAMS, "a", None, random.Random(0), out.append,
        )
    assert session.n_past == 5
    assert out == [" a", " a", " a"]


def test_play_back_previous_tokens() -> None:
    model = ScriptedModel(script=[4])
    session = InferenceSession(
        SessionParameters(context_size=16), tokens=[0, 2, 3], n_past=3,
    )
    params = InferenceParameters(play_back_previous_tokens=True)
    out: list[str] = []

    session.inference_with_prompt(model, params, "", 1, random.Random(0), out.append)

    assert out == ["", " a", " b", " c"]


def test_clone_shares_no_mutable_state() -> None:
    model = ScriptedModel()
    session = InferenceSession(SessionParameters(context_size=16))
    session.feed_prompt(model, PARAMS, "a b", lambda _: None)

    clone = session.clone()
    assert clone == session

    clone.feed_prompt(model, PARAMS, "c", lambda _: None)
    assert clone != session
    assert session.tokens == [0, 2, 3]
    assert session.memory["history"] == [0, 2, 3]


def test_state_round_trip() -> None:
    params = SessionParameters(context_size=16)
    session = InferenceSession(params, tokens=[0, 2], n_past=2, memory={"k": [1]})
    restored = InferenceSession.from_state(session.export_state(), params)
    assert restored == session
