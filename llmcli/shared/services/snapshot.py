"""Session snapshots — persist and restore an inference session.

A snapshot is gzip-compressed JSON written atomically:

    {
      "format_version": 1,
      "model_fingerprint": "3f2a...",
      "session_parameters": {"context_size": 2048, "repeat_last_n": 64},
      "tokens": [0, 17, 4],
      "n_past": 3,
      "memory": {...}
    }

Snapshots are only restored against the same model and context size
that produced them; anything else is rejected with
SnapshotMismatchError.
"""
from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any

from llmcli.engine.config import SessionParameters
from llmcli.engine.errors import SnapshotError, SnapshotMismatchError
from llmcli.engine.models import Model
from llmcli.engine.session import InferenceSession
from llmcli.shared.services.durable_write import atomic_write_bytes

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT_VERSION = 1


def _read_payload(path: Path) -> dict[str, Any]:
    try:
        with gzip.open(path, "rt", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, EOFError, json.JSONDecodeError) as exc:
        raise SnapshotError(str(path), f"unreadable snapshot: {exc}") from exc
    if not isinstance(payload, dict):
        raise SnapshotError(str(path), "snapshot is not a JSON object")
    return payload


def read_session(
    model: Model, path: Path, params: SessionParameters,
) -> InferenceSession:
    """Restore a session, rejecting snapshots from another configuration."""
    payload = _read_payload(path)
    version = payload.get("format_version")
    if version != SNAPSHOT_FORMAT_VERSION:
        raise SnapshotError(str(path), f"unsupported format version {version}")

    fingerprint = payload.get("model_fingerprint")
    if fingerprint != model.fingerprint:
        raise SnapshotMismatchError(
            str(path),
            f"written by model {fingerprint}, current model is {model.fingerprint}",
        )
    try:
        stored = SessionParameters.from_dict(payload["session_parameters"])
        session = InferenceSession.from_state(payload, params)
    except (KeyError, TypeError, ValueError) as exc:
        raise SnapshotError(str(path), f"malformed snapshot: {exc}") from exc

    if stored.context_size != params.context_size:
        raise SnapshotMismatchError(
            str(path),
            f"context size {stored.context_size} does not match "
            f"{params.context_size}",
        )
    if session.n_past > params.context_size or session.n_past != len(session.tokens):
        raise SnapshotMismatchError(
            str(path), f"inconsistent token count {session.n_past}",
        )
    return session


def write_session(
    model: Model, session: InferenceSession, path: Path,
) -> None:
    payload = {
        "format_version": SNAPSHOT_FORMAT_VERSION,
        "model_fingerprint": model.fingerprint,
        "session_parameters": session.params.to_dict(),
        **session.export_state(),
    }
    data = gzip.compress(json.dumps(payload).encode("utf-8"))
    try:
        atomic_write_bytes(path, data)
    except OSError as exc:
        raise SnapshotError(str(path), f"cannot write snapshot: {exc}") from exc
    logger.info("Saved inference session to %s (%d tokens)", path, session.n_past)


def read_or_create_session(
    model: Model,
    persist_session: Path | None,
    load_session: Path | None,
    params: SessionParameters,
) -> tuple[InferenceSession, bool]:
    """Return ``(session, loaded)``.

    ``load_session`` is restored when given; otherwise an existing
    ``persist_session`` file is; otherwise a fresh session is created.
    """
    if load_session is not None:
        session = read_session(model, load_session, params)
        logger.info("Loaded inference session from %s", load_session)
        return session, True
    if persist_session is not None and persist_session.exists():
        session = read_session(model, persist_session, params)
        logger.info("Loaded inference session from %s", persist_session)
        return session, True
    return InferenceSession(params=params), False
