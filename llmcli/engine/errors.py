"""Exception hierarchy for the inference engine and CLI.

Specific exceptions for each failure mode. The session controller
classifies them; nothing below the controller decides whether a
failure is fatal.
"""
from __future__ import annotations


class LlmCliError(Exception):
    """Base exception for all llmcli errors."""


class InferenceError(LlmCliError):
    """Base for errors raised while feeding or generating."""


class ContextFullError(InferenceError):
    """The session's context window has no room for another token."""
    def __init__(self, n_past: int, context_size: int):
        self.n_past = n_past
        self.context_size = context_size
        super().__init__(
            f"Context window full ({n_past}/{context_size} tokens)"
        )


class TokenizationFailedError(InferenceError):
    """The prompt could not be tokenized by the model's vocabulary."""
    def __init__(self, text: str, reason: str = ""):
        self.text = text
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to tokenize prompt{detail}")


class UserCallbackError(InferenceError):
    """A per-token callback raised; the original exception is kept."""
    def __init__(self, error: BaseException):
        self.error = error
        super().__init__(f"Token callback failed: {error}")


class EndOfTextError(InferenceError):
    """The model produced its end-of-text token."""
    def __init__(self) -> None:
        super().__init__("End of text")


class PromptConfigError(LlmCliError):
    """Neither a prompt nor a prompt template was provided."""
    def __init__(self) -> None:
        super().__init__("No prompt or prompt file was provided. See --help")


class SnapshotError(LlmCliError):
    """A session snapshot could not be read or written."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Session snapshot {path}: {reason}")


class SnapshotMismatchError(SnapshotError):
    """A snapshot was produced under incompatible model or parameters."""


class ModelLoadError(LlmCliError):
    """The model file could not be loaded."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load model {path}: {reason}")


class ConfigError(LlmCliError):
    """A configuration file could not be parsed."""


class QuantizeError(LlmCliError):
    """Quantization of a model file failed."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"failed to quantize model: {reason}")
