"""llmcli — main application entry point.

Usage:
    llmcli infer -m model.json -p "Once upon a time"
    llmcli repl -m model.json --prompt-file template.txt
    llmcli chat -m model.json
    llmcli quantize model.json model-q4.json q4_0
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console

logger = logging.getLogger(__name__)

_GENERATE_FLAGS = (
    "num_predict",
    "context_size",
    "batch_size",
    "threads",
    "top_k",
    "top_p",
    "temperature",
    "repeat_penalty",
    "repeat_last_n",
    "seed",
    "load_session",
    "persist_session",
    "save_session",
)


def configure_logging(level: str, log_file: Path | None = None) -> None:
    """Install stderr (and optional rotating file) handlers on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def _common_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--config", metavar="PATH", type=Path,
        help="YAML config file (default: .llmcli/llmcli.yaml or llmcli.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file", metavar="PATH", type=Path,
        help="Also write logs to a rotating file",
    )
    return parser


def _model_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--model-path", "-m", type=Path,
        help="Model file to load (.json model or .txt corpus)",
    )
    return parser


def _prompt_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--prompt", "-p",
        help="Prompt text; substituted into {{PROMPT}} of --prompt-file",
    )
    parser.add_argument(
        "--prompt-file", "-f", type=Path,
        help="Prompt template file",
    )
    return parser


def _template_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--prompt-file", "-f", type=Path,
        help="Prompt template; each input line replaces {{PROMPT}}",
    )
    return parser


def _generate_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--num-predict", "-n", type=int,
        help="Maximum tokens to generate (0 = until context is full)",
    )
    parser.add_argument("--context-size", type=int, help="Context window in tokens")
    parser.add_argument("--batch-size", type=int, help="Prompt tokens evaluated per batch")
    parser.add_argument("--threads", type=int, help="Worker threads for evaluation")
    parser.add_argument("--top-k", type=int, help="Top-K sampling cutoff")
    parser.add_argument("--top-p", type=float, help="Top-P (nucleus) sampling cutoff")
    parser.add_argument("--temperature", type=float, help="Sampling temperature")
    parser.add_argument("--repeat-penalty", type=float, help="Penalty for repeated tokens")
    parser.add_argument(
        "--repeat-last-n", type=int,
        help="How many recent tokens the repeat penalty considers",
    )
    parser.add_argument("--seed", type=int, help="RNG seed (default: random)")
    parser.add_argument(
        "--load-session", type=Path,
        help="Restore the session from this snapshot before starting",
    )
    return parser


def build_parser() -> argparse.ArgumentParser:
    common = _common_parser()
    model = _model_parser()
    prompt = _prompt_parser()
    template = _template_parser()
    generate = _generate_parser()

    parser = argparse.ArgumentParser(
        prog="llmcli",
        description="llmcli — run local text-generation models from the terminal",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    infer = sub.add_parser(
        "infer", parents=[common, model, prompt, generate],
        help="Generate text once from a prompt",
    )
    infer.add_argument(
        "--persist-session", type=Path,
        help="Load the session from this file if it exists, and save it after",
    )
    infer.add_argument(
        "--save-session", type=Path,
        help="Save the session to this file after inference",
    )

    sub.add_parser(
        "dump-tokens", parents=[common, model, prompt],
        help="Print how a prompt is tokenized",
    )
    sub.add_parser(
        "repl", parents=[common, model, template, generate],
        help="Interactive prompts; every line starts from the same context",
    )
    sub.add_parser(
        "chat", parents=[common, model, template, generate],
        help="Interactive chat; context accumulates across lines",
    )

    convert = sub.add_parser(
        "convert", parents=[common],
        help="Build a bigram model file from a text corpus",
    )
    convert.add_argument("source", type=Path)
    convert.add_argument("destination", type=Path)
    convert.add_argument("--max-vocab", type=int, default=512)

    quantize = sub.add_parser(
        "quantize", parents=[common],
        help="Quantize a model file's weights to 4 bits",
    )
    quantize.add_argument("source", type=Path)
    quantize.add_argument("destination", type=Path)
    quantize.add_argument("target", choices=["q4_0", "q4_1"])
    return parser


def _build_config(args: argparse.Namespace):
    from llmcli.engine.config import GenerateConfig
    from llmcli.engine.yaml_config import (
        CliConfig,
        discover_config_path,
        load_yaml_config,
    )

    config = GenerateConfig.from_env()
    config_path = args.config or discover_config_path(Path.cwd())
    file_config = load_yaml_config(config_path) if config_path else CliConfig()
    file_config.build_generate_config(config)
    config.apply_overrides({
        flag: getattr(args, flag, None) for flag in _GENERATE_FLAGS
    })
    model_path = getattr(args, "model_path", None) or file_config.model_path
    return config, model_path


def _run_command(args: argparse.Namespace, console: Console) -> int:
    from llmcli.adapters.line_source import ConsoleLineSource
    from llmcli.adapters.output import ConsoleTokenSink, feeding_spinner
    from llmcli.engine.config import RunContext
    from llmcli.engine.controller import SessionController
    from llmcli.engine.demo_model import convert_corpus, load_model
    from llmcli.engine.models import QuantizeTarget
    from llmcli.engine.progress import describe_progress
    from llmcli.engine.quantize import quantize
    from llmcli.shared.prompt import PromptFile, resolve_prompt

    if args.command == "convert":
        convert_corpus(args.source, args.destination, max_vocab=args.max_vocab)
        return 0

    if args.command == "quantize":
        quantize(
            args.source,
            args.destination,
            QuantizeTarget(args.target),
            lambda event: logger.info("%s", describe_progress(event)),
        )
        return 0

    config, model_path = _build_config(args)
    if model_path is None:
        logger.error("No model given. Pass --model-path or set model.path in the config")
        return 1

    prompt_file = PromptFile(args.prompt_file)
    sink = ConsoleTokenSink(console)
    context = RunContext(
        config=config,
        model=load_model(model_path),
        sink=sink,
        end_stream=sink.end_stream,
        feeding=lambda: feeding_spinner(console),
    )
    controller = SessionController(context)

    if args.command == "infer":
        prompt = resolve_prompt(prompt_file.contents(), args.prompt)
        return 0 if controller.infer(prompt) else 1

    if args.command == "dump-tokens":
        prompt = resolve_prompt(prompt_file.contents(), args.prompt)
        return 0 if controller.dump_tokens(prompt) is not None else 1

    controller.run_interactive(
        ConsoleLineSource(console),
        chat_mode=args.command == "chat",
        template=prompt_file.contents(),
    )
    return 0


def run(argv: list[str] | None = None, console: Console | None = None) -> int:
    """Parse *argv*, run the subcommand and return the exit status."""
    from llmcli.engine.errors import LlmCliError

    args = build_parser().parse_args(argv)
    level = "DEBUG" if args.verbose else os.getenv("LLMCLI_LOG_LEVEL", "INFO")
    configure_logging(level, args.log_file)

    try:
        return _run_command(args, console or Console())
    except LlmCliError as exc:
        logger.error("%s", exc)
        return 1
    except OSError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
