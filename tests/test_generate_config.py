from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from llmcli.engine.config import GenerateConfig
from llmcli.engine.errors import ConfigError
from llmcli.engine.yaml_config import discover_config_path, load_yaml_config


def test_defaults() -> None:
    cfg = GenerateConfig()
    assert cfg.num_predict == 128
    assert cfg.context_size == 2048
    assert cfg.seed is None
    assert cfg.session_parameters().context_size == 2048


def test_from_env(monkeypatch) -> None:
    monkeypatch.setenv("LLMCLI_CONTEXT_SIZE", "512")
    monkeypatch.setenv("LLMCLI_TEMPERATURE", "0.2")
    monkeypatch.setenv("LLMCLI_SEED", "99")
    cfg = GenerateConfig.from_env()
    assert cfg.context_size == 512
    assert cfg.temperature == 0.2
    assert cfg.seed == 99


def test_inference_parameters_play_back_only_when_loaded() -> None:
    cfg = GenerateConfig(top_k=5)
    assert cfg.inference_parameters(False).play_back_previous_tokens is False
    loaded = cfg.inference_parameters(True)
    assert loaded.play_back_previous_tokens is True
    assert loaded.top_k == 5


def test_seeded_rng_is_reproducible() -> None:
    cfg = GenerateConfig(seed=3)
    assert cfg.rng().random() == cfg.rng().random()


def test_apply_overrides_skips_none_and_unknown(caplog) -> None:
    cfg = GenerateConfig()
    cfg.apply_overrides({
        "top_k": 7,
        "seed": None,
        "bogus": 1,
        "save_session": "out.snap",
    })
    assert cfg.top_k == 7
    assert cfg.seed is None
    assert cfg.save_session == Path("out.snap")
    assert "bogus" in caplog.text


def test_yaml_config_resolves_relative_paths() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "llmcli.yaml"
        config_path.write_text(
            "model:\n"
            "  path: models/tiny.json\n"
            "generate:\n"
            "  num_predict: 16\n"
            "  persist_session: cache/chat.snap\n"
        )
        cfg = load_yaml_config(config_path)
        generate = cfg.build_generate_config(GenerateConfig())

        assert cfg.model_path == Path(tmpdir) / "models" / "tiny.json"
        assert generate.num_predict == 16
        assert generate.persist_session == Path(tmpdir) / "cache" / "chat.snap"


def test_yaml_config_parse_error() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "llmcli.yaml"
        config_path.write_text("generate: [unclosed\n")
        with pytest.raises(ConfigError):
            load_yaml_config(config_path)


def test_discover_config_prefers_dot_directory() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        assert discover_config_path(root) is None
        (root / "llmcli.yaml").write_text("generate: {}\n")
        assert discover_config_path(root) == root / "llmcli.yaml"
        (root / ".llmcli").mkdir()
        (root / ".llmcli" / "llmcli.yaml").write_text("generate: {}\n")
        assert discover_config_path(root) == root / ".llmcli" / "llmcli.yaml"


def test_apply_overrides_coerces_quoted_values() -> None:
    cfg = GenerateConfig()
    cfg.apply_overrides({
        "num_predict": "3",
        "temperature": "0.5",
        "seed": "11",
        "load_session": "base.snap",
    })
    assert cfg.num_predict == 3
    assert cfg.temperature == 0.5
    assert cfg.seed == 11
    assert cfg.load_session == Path("base.snap")


def test_apply_overrides_rejects_unconvertible_values() -> None:
    cfg = GenerateConfig()
    with pytest.raises(ConfigError):
        cfg.apply_overrides({"top_k": "many"})
    with pytest.raises(ConfigError):
        cfg.apply_overrides({"context_size": [1, 2]})


def test_yaml_generate_values_are_typed() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "llmcli.yaml"
        config_path.write_text('generate:\n  num_predict: "3"\n  top_p: "0.5"\n')
        generate = load_yaml_config(config_path).build_generate_config(
            GenerateConfig()
        )
        assert generate.num_predict == 3
        assert generate.top_p == 0.5


@pytest.mark.parametrize(
    "body",
    [
        "model: corpus.txt\n",
        "generate:\n  - num_predict\n",
        "model:\n  path: [a, b]\n",
        "generate:\n  save_session: 42\n",
    ],
)
def test_yaml_sections_must_be_mappings(body) -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "llmcli.yaml"
        config_path.write_text(body)
        with pytest.raises(ConfigError):
            load_yaml_config(config_path)
