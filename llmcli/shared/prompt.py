"""Prompt templates — merge an optional template with user text."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from llmcli.engine.errors import PromptConfigError

logger = logging.getLogger(__name__)

PROMPT_MARKER = "{{PROMPT}}"


def process_prompt(template: str, prompt: str) -> str:
    """Replace every marker in *template* with *prompt*, literally."""
    return template.replace(PROMPT_MARKER, prompt)


def resolve_prompt(template: str | None, prompt: str | None) -> str:
    """Pick the text to feed from a template and/or literal prompt.

    Raises PromptConfigError when neither is given.
    """
    if template is not None:
        if prompt is not None:
            return process_prompt(template, prompt)
        return template
    if prompt is not None:
        return prompt
    raise PromptConfigError()


@dataclass(frozen=True)
class PromptFile:
    """A ``--prompt-file`` argument, read lazily."""
    path: Path | None = None

    def contents(self) -> str | None:
        if self.path is None:
            return None
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Could not read prompt file %s: %s", self.path, exc)
            raise
