"""YAML configuration loader.

Example YAML:
    model:
      path: models/shakespeare.json

    generate:
      num_predict: 256
      context_size: 1024
      temperature: 0.7
      seed: 42
      persist_session: .llmcli/session.snap
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .config import GenerateConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_KNOWN_SECTIONS = ("model", "generate")


@dataclass
class CliConfig:
    """Complete parsed YAML configuration."""
    model_path: Path | None = None
    generate: dict = field(default_factory=dict)

    def build_generate_config(self, base: GenerateConfig) -> GenerateConfig:
        """Apply the ``generate`` section on top of *base* (in place)."""
        base.apply_overrides(self.generate)
        return base


def discover_config_path(cwd: Path) -> Path | None:
    """Return ``.llmcli/llmcli.yaml`` or ``llmcli.yaml`` under *cwd*, if any."""
    candidates = [cwd / ".llmcli" / "llmcli.yaml", cwd / "llmcli.yaml"]
    for candidate in candidates:
        if candidate.is_file():
            logger.info("Auto-discovered config: %s", candidate)
            return candidate
    logger.debug(
        "No config file found (tried %s); using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def load_yaml_config(path: str | Path) -> CliConfig:
    """Load and parse a YAML config file.

    Relative paths inside the file are resolved against the file's
    directory.
    """
    path = Path(path)
    logger.info("load_yaml_config: loading %s (exists=%s)", path, path.exists())
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"YAML parse error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping at top level")

    for key in data:
        if key not in _KNOWN_SECTIONS:
            logger.warning("load_yaml_config: ignoring unknown section %r", key)

    for name in _KNOWN_SECTIONS:
        section = data.get(name)
        if section is not None and not isinstance(section, dict):
            raise ConfigError(f"Config {path}: section {name!r} must be a mapping")

    base_dir = path.parent
    model_section = data.get("model") or {}
    model_path = None
    if model_section.get("path"):
        if not isinstance(model_section["path"], str):
            raise ConfigError(f"Config {path}: model.path must be a string")
        model_path = Path(model_section["path"])
        if not model_path.is_absolute():
            model_path = base_dir / model_path

    generate = dict(data.get("generate") or {})
    for key in ("load_session", "persist_session", "save_session"):
        if generate.get(key):
            if not isinstance(generate[key], str):
                raise ConfigError(f"Config {path}: generate.{key} must be a string")
            value = Path(generate[key])
            generate[key] = value if value.is_absolute() else base_dir / value

    logger.info(
        "load_yaml_config: model=%s generate keys=%s",
        model_path, ", ".join(sorted(generate)) or "none",
    )
    return CliConfig(model_path=model_path, generate=generate)
