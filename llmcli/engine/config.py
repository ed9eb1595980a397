"""Generation configuration.

All settings have sensible defaults. Override via LLMCLI_* env vars,
a YAML file (see yaml_config.py) or command-line flags.
"""
from __future__ import annotations

import logging
import os
import random
from collections.abc import Callable
from contextlib import AbstractContextManager, nullcontext
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ConfigError

if TYPE_CHECKING:
    from .models import Model

logger = logging.getLogger(__name__)


# Receives each produced piece of text, synchronously.
TokenSink = Callable[[str], None]


@dataclass(frozen=True)
class SessionParameters:
    """Parameters fixed when a session is created; stored in snapshots."""
    context_size: int = 2048
    repeat_last_n: int = 64

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> SessionParameters:
        return cls(
            context_size=int(data["context_size"]),
            repeat_last_n=int(data.get("repeat_last_n", cls.repeat_last_n)),
        )


@dataclass(frozen=True)
class InferenceParameters:
    """Per-run sampling parameters."""
    threads: int = 4
    batch_size: int = 8
    top_k: int = 40
    top_p: float = 0.95
    repeat_penalty: float = 1.30
    temperature: float = 0.80
    # Echo the tokens already in a loaded session before new output.
    play_back_previous_tokens: bool = False


_SETTING_TYPES: dict[str, Callable] = {
    "num_predict": int,
    "context_size": int,
    "batch_size": int,
    "threads": int,
    "top_k": int,
    "top_p": float,
    "temperature": float,
    "repeat_penalty": float,
    "repeat_last_n": int,
    "seed": int,
    "load_session": Path,
    "persist_session": Path,
    "save_session": Path,
}


@dataclass
class GenerateConfig:
    """Generation and session-file settings shared by all subcommands."""

    num_predict: int | None = 128
    context_size: int = 2048
    batch_size: int = 8
    threads: int = field(default_factory=lambda: os.cpu_count() or 4)
    top_k: int = 40
    top_p: float = 0.95
    temperature: float = 0.80
    repeat_penalty: float = 1.30
    repeat_last_n: int = 64
    # None means seed from OS entropy
    seed: int | None = None
    load_session: Path | None = None
    persist_session: Path | None = None
    save_session: Path | None = None

    def session_parameters(self) -> SessionParameters:
        return SessionParameters(
            context_size=self.context_size,
            repeat_last_n=self.repeat_last_n,
        )

    def inference_parameters(self, session_loaded: bool) -> InferenceParameters:
        """Build sampling parameters.

        A session restored from a snapshot already holds its prompt, so
        its tokens are played back instead of being fed again.
        """
        return InferenceParameters(
            threads=self.threads,
            batch_size=self.batch_size,
            top_k=self.top_k,
            top_p=self.top_p,
            repeat_penalty=self.repeat_penalty,
            temperature=self.temperature,
            play_back_previous_tokens=session_loaded,
        )

    def rng(self) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(self.seed)

    def apply_overrides(self, overrides: dict) -> None:
        """Set every known, non-None key of *overrides* on this config.

        Values are coerced to the setting's type; ConfigError is raised
        when that fails.
        """
        for key, value in overrides.items():
            if value is None:
                continue
            convert = _SETTING_TYPES.get(key)
            if convert is None:
                logger.warning("Ignoring unknown generate setting: %s", key)
                continue
            if isinstance(value, (dict, list)):
                raise ConfigError(
                    f"Invalid value for generate setting {key!r}: {value!r}"
                )
            try:
                setattr(self, key, convert(value))
            except (TypeError, ValueError) as exc:
                raise ConfigError(
                    f"Invalid value for generate setting {key!r}: {value!r}"
                ) from exc

    @classmethod
    def from_env(cls) -> GenerateConfig:
        """Load configuration from LLMCLI_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("LLMCLI_")
        }
        if env_vars:
            logger.info(
                "GenerateConfig.from_env: env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(env_vars.items())),
            )
        else:
            logger.debug("GenerateConfig.from_env: no LLMCLI_* env vars set")

        num_predict = os.getenv("LLMCLI_NUM_PREDICT")
        seed = os.getenv("LLMCLI_SEED")
        config = cls(
            num_predict=int(num_predict) if num_predict else cls.num_predict,
            context_size=int(os.getenv(
                "LLMCLI_CONTEXT_SIZE", str(cls.context_size)
            )),
            batch_size=int(os.getenv(
                "LLMCLI_BATCH_SIZE", str(cls.batch_size)
            )),
            threads=int(os.getenv(
                "LLMCLI_THREADS", str(os.cpu_count() or 4)
            )),
            top_k=int(os.getenv("LLMCLI_TOP_K", str(cls.top_k))),
            top_p=float(os.getenv("LLMCLI_TOP_P", str(cls.top_p))),
            temperature=float(os.getenv(
                "LLMCLI_TEMPERATURE", str(cls.temperature)
            )),
            repeat_penalty=float(os.getenv(
                "LLMCLI_REPEAT_PENALTY", str(cls.repeat_penalty)
            )),
            repeat_last_n=int(os.getenv(
                "LLMCLI_REPEAT_LAST_N", str(cls.repeat_last_n)
            )),
            seed=int(seed) if seed else None,
        )
        logger.debug(
            "GenerateConfig.from_env: num_predict=%s context_size=%s seed=%s",
            config.num_predict, config.context_size, config.seed,
        )
        return config


@dataclass
class RunContext:
    """Everything a controller run needs, constructed once in main().

    ``end_stream`` terminates the output after each generation;
    ``feeding`` wraps prompt feeding (e.g. to show a spinner).
    """
    config: GenerateConfig
    model: Model
    sink: TokenSink
    end_stream: Callable[[], None] = lambda: None
    feeding: Callable[[], AbstractContextManager] = nullcontext
