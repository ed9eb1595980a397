"""Session controller — drives feed/generate turns against a session.

Two modes of interaction:

- interactive: one turn per input line. In chat (persistent) mode the
  session keeps growing across turns; otherwise each turn starts from
  a clone of the session taken before the turn and the mutation is
  discarded afterwards.
- single shot: one feed+generate cycle, optionally persisting the
  resulting session.

Inference errors never escape the controller. Context exhaustion is
logged and the turn or run continues; other inference failures abort
the current turn only.
"""
from __future__ import annotations

import dataclasses
import logging
from enum import Enum
from typing import Protocol

from llmcli.adapters.line_source import EndOfInput, Interrupted, LineSourceError
from llmcli.shared.prompt import process_prompt
from llmcli.shared.services.snapshot import read_or_create_session, write_session

from .config import InferenceParameters, RunContext
from .errors import (
    ContextFullError,
    EndOfTextError,
    InferenceError,
    TokenizationFailedError,
    UserCallbackError,
)
from .models import TokenPiece
from .session import InferenceSession

logger = logging.getLogger(__name__)


class LineSource(Protocol):
    def read_line(self) -> str: ...


class ControllerState(str, Enum):
    AWAITING_LINE = "awaiting_line"
    PROCESSING = "processing"
    CLOSED = "closed"


def _discard(_piece: str) -> None:
    pass


class SessionController:
    """Owns one InferenceSession for the duration of a run."""

    def __init__(self, context: RunContext) -> None:
        self._ctx = context
        self.session: InferenceSession | None = None
        self.state = ControllerState.AWAITING_LINE

    def _open_session(
        self, persist_session=None,
    ) -> tuple[InferenceSession, bool]:
        config = self._ctx.config
        session, loaded = read_or_create_session(
            self._ctx.model,
            persist_session,
            config.load_session,
            config.session_parameters(),
        )
        self.session = session
        return session, loaded

    # -- interactive ------------------------------------------------------

    def run_interactive(
        self,
        line_source: LineSource,
        chat_mode: bool,
        template: str | None = None,
    ) -> int:
        """Process lines until end of input or interrupt.

        Returns the number of turns processed.
        """
        _, loaded = self._open_session()
        # A restored prompt is part of the baseline, not replayed per turn.
        params = dataclasses.replace(
            self._ctx.config.inference_parameters(loaded),
            play_back_previous_tokens=False,
        )
        rng = self._ctx.config.rng()
        logger.info(
            "Interactive session started (chat_mode=%s, n_past=%d)",
            chat_mode, self.session.n_past,
        )

        turns = 0
        while True:
            self.state = ControllerState.AWAITING_LINE
            try:
                line = line_source.read_line()
            except (EndOfInput, Interrupted):
                break
            except LineSourceError as exc:
                logger.error("%s", exc)
                continue

            self.state = ControllerState.PROCESSING
            self.run_turn(line, chat_mode, params, rng, template)
            turns += 1

        self.state = ControllerState.CLOSED
        logger.info("Interactive session closed after %d turn(s)", turns)
        return turns

    def run_turn(
        self,
        line: str,
        chat_mode: bool,
        params: InferenceParameters,
        rng,
        template: str | None = None,
    ) -> None:
        """Feed one line and generate a reply.

        Outside chat mode the session is restored to its state before
        the turn, whatever happened during it.
        """
        model = self._ctx.model
        session = self.session
        backup = None if chat_mode else session.clone()
        prompt = process_prompt(template, line) if template is not None else line

        try:
            with self._ctx.feeding():
                try:
                    session.feed_prompt(model, params, prompt, _discard)
                except ContextFullError:
                    logger.error("Prompt exceeds context window length.")

            try:
                session.inference_with_prompt(
                    model,
                    params,
                    "",
                    self._ctx.config.num_predict,
                    rng,
                    self._ctx.sink,
                )
            except ContextFullError:
                logger.error("Reply exceeds context window length")
            finally:
                self._ctx.end_stream()
        except InferenceError as exc:
            logger.error("Turn aborted: %s", exc)
        finally:
            if backup is not None:
                self.session = backup

    # -- single shot ------------------------------------------------------

    def infer(self, prompt: str) -> bool:
        """Run one feed+generate cycle; return False on a fatal failure."""
        config = self._ctx.config
        session, loaded = self._open_session(config.persist_session)
        params = config.inference_parameters(loaded)
        rng = config.rng()

        ok = True
        try:
            session.inference_with_prompt(
                self._ctx.model,
                params,
                prompt,
                config.num_predict,
                rng,
                self._ctx.sink,
            )
        except ContextFullError:
            logger.warning("Context window full, stopping inference.")
        except TokenizationFailedError:
            logger.error("Failed to tokenize initial prompt.")
            ok = False
        except (UserCallbackError, EndOfTextError) as exc:
            raise AssertionError("token sink cannot fail") from exc
        finally:
            self._ctx.end_stream()

        session_path = config.save_session or config.persist_session
        if session_path is not None:
            write_session(self._ctx.model, session, session_path)
        return ok

    def dump_tokens(self, prompt: str) -> list[TokenPiece] | None:
        """Log the tokenization of *prompt*; None when it fails."""
        try:
            pieces = self._ctx.model.tokenize(prompt, False)
        except TokenizationFailedError as exc:
            logger.error("Could not tokenize prompt: %s", exc)
            return None
        logger.info("=== Dumping prompt tokens:")
        logger.info("%s", ", ".join(str(tid) for _, tid in pieces))
        logger.info(
            "%s", ", ".join(f"{piece!r}:{tid}" for piece, tid in pieces),
        )
        return pieces
