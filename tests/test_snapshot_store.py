from __future__ import annotations

import gzip
import json
import random
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from llmcli.engine.config import InferenceParameters, SessionParameters
from llmcli.engine.demo_model import BigramModel, build_model_file
from llmcli.engine.errors import SnapshotError, SnapshotMismatchError
from llmcli.engine.session import InferenceSession
from llmcli.shared.services.snapshot import (
    read_or_create_session,
    read_session,
    write_session,
)

CORPUS = "the cat sat on the mat\nthe dog sat on the log\n"
PARAMS = SessionParameters(context_size=64, repeat_last_n=8)


def _model(corpus: str = CORPUS) -> BigramModel:
    return BigramModel(build_model_file(corpus))


def _fed_session(model: BigramModel) -> InferenceSession:
    session = InferenceSession(PARAMS)
    session.feed_prompt(model, InferenceParameters(), "the cat sat", lambda _: None)
    return session


def _generate(model: BigramModel, session: InferenceSession) -> list[str]:
    out: list[str] = []
    session.inference_with_prompt(
        model, InferenceParameters(), "", 6, random.Random(1234), out.append,
    )
    return out


def test_round_trip_reproduces_generation() -> None:
    model = _model()
    original = _fed_session(model)
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "session.snap"
        write_session(model, original, path)
        restored = read_session(model, path, PARAMS)

    assert restored == original
    assert model.logits(restored) == model.logits(original)
    assert _generate(model, restored.clone()) == _generate(model, original.clone())


def test_snapshot_is_gzipped_json() -> None:
    model = _model()
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "nested" / "session.snap"
        write_session(model, _fed_session(model), path)
        payload = json.loads(gzip.decompress(path.read_bytes()))

    assert payload["format_version"] == 1
    assert payload["model_fingerprint"] == model.fingerprint
    assert payload["session_parameters"] == {"context_size": 64, "repeat_last_n": 8}
    assert payload["n_past"] == len(payload["tokens"]) == 4


def test_different_context_size_is_rejected() -> None:
    model = _model()
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "session.snap"
        write_session(model, _fed_session(model), path)
        with pytest.raises(SnapshotMismatchError):
            read_session(model, path, SessionParameters(context_size=128))


def test_different_model_is_rejected() -> None:
    model = _model()
    other = _model(CORPUS + "a bird flew\n")
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "session.snap"
        write_session(model, _fed_session(model), path)
        with pytest.raises(SnapshotMismatchError):
            read_session(other, path, PARAMS)


def test_corrupt_snapshot_raises() -> None:
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "session.snap"
        path.write_bytes(b"not gzip")
        with pytest.raises(SnapshotError):
            read_session(_model(), path, PARAMS)


def test_read_or_create_fresh_session() -> None:
    model = _model()
    with TemporaryDirectory() as tmpdir:
        missing = Path(tmpdir) / "missing.snap"
        session, loaded = read_or_create_session(model, missing, None, PARAMS)
    assert loaded is False
    assert session == InferenceSession(PARAMS)


def test_read_or_create_prefers_load_path() -> None:
    model = _model()
    with TemporaryDirectory() as tmpdir:
        persist = Path(tmpdir) / "persist.snap"
        load = Path(tmpdir) / "load.snap"
        write_session(model, InferenceSession(PARAMS), persist)
        fed = _fed_session(model)
        write_session(model, fed, load)

        session, loaded = read_or_create_session(model, persist, load, PARAMS)
    assert loaded is True
    assert session == fed


def test_read_or_create_uses_existing_persist_path() -> None:
    model = _model()
    with TemporaryDirectory() as tmpdir:
        persist = Path(tmpdir) / "persist.snap"
        fed = _fed_session(model)
        write_session(model, fed, persist)
        session, loaded = read_or_create_session(model, persist, None, PARAMS)
    assert loaded is True
    assert session == fed


def test_missing_load_path_raises() -> None:
    with TemporaryDirectory() as tmpdir:
        with pytest.raises(SnapshotError):
            read_or_create_session(
                _model(), None, Path(tmpdir) / "nope.snap", PARAMS,
            )


def test_write_replaces_file_without_leftover_temp_files() -> None:
    model = _model()
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "session.snap"
        write_session(model, InferenceSession(PARAMS), path)
        fed = _fed_session(model)
        write_session(model, fed, path)

        assert [p.name for p in Path(tmpdir).iterdir()] == ["session.snap"]
        assert read_session(model, path, PARAMS) == fed
