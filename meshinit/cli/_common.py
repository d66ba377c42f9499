"""Utilities shared by CLI entrypoints."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, cast

from meshinit.config import ConfigError, load_config
from meshinit.logging import configure_logging
from pymongo.errors import ConfigurationError, PyMongoError

if TYPE_CHECKING:
    from meshinit.config import AppConfig


_LOG_LEVEL_CHOICES = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET")
_LOG_FORMAT_CHOICES = ("plain", "text", "json")
_LOG_DESTINATION_CHOICES = ("auto", "stdout", "stderr")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


CliRunner = Callable[[argparse.Namespace], int]


class CLIArgs(argparse.Namespace):
    log_level: str
    log_format: str
    log_destination: str
    config: Path | None
    env_file: Path | None
    app_config: AppConfig


def build_parser(*, prog: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description=description,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a TOML configuration file overriding defaults.",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        help="Optional .env file containing credentials.",
    )
    parser.add_argument(
        "--log-level",
        type=_choice_type(_LOG_LEVEL_CHOICES, "log level", str.upper),
        choices=_LOG_LEVEL_CHOICES,
        default="INFO",
        help="Logging verbosity (case-insensitive).",
    )
    parser.add_argument(
        "--log-format",
        type=_choice_type(_LOG_FORMAT_CHOICES, "log format", str.lower),
        choices=_LOG_FORMAT_CHOICES,
        default="plain",
        help="Bare messages, timestamped text, or structured JSON logs.",
    )
    parser.add_argument(
        "--log-destination",
        type=_choice_type(_LOG_DESTINATION_CHOICES, "log destination", str.lower),
        choices=_LOG_DESTINATION_CHOICES,
        default="auto",
        help="Write logs to stdout, stderr, or split automatically by level.",
    )
    return parser


def run_cli(
    parser: argparse.ArgumentParser,
    argv: Sequence[str] | None,
    *,
    cli_name: str,
    runner: CliRunner,
) -> int:
    args = cast(CLIArgs, parser.parse_args(argv))
    configure_logging(
        level=args.log_level,
        fmt=args.log_format,
        destination=args.log_destination,
    )
    logger = logging.getLogger(f"meshinit.cli.{cli_name}")
    try:
        config = load_config(env_file=args.env_file, config_file=args.config)
    except ConfigError as exc:
        logger.error(
            "Configuration invalid: %s",
            exc,
            extra={"cli": cli_name, "error": str(exc)},
        )
        return EXIT_CONFIG_ERROR

    args.app_config = config
    logger.debug("CLI ready", extra={"cli": cli_name})
    try:
        return runner(args)
    except ConfigurationError as exc:
        # Raised while building the client, e.g. for a malformed MONGODB_URI.
        logger.error(
            "Configuration invalid: %s",
            exc,
            extra={"cli": cli_name, "error": str(exc)},
        )
        return EXIT_CONFIG_ERROR
    except PyMongoError as exc:
        logger.error("MongoDB error: %s", exc, extra={"cli": cli_name, "error": str(exc)})
        return EXIT_FAILURE


def _choice_type(
    choices: Sequence[str], label: str, normalize: Callable[[str], str]
) -> Callable[[str], str]:
    def _convert(value: str) -> str:
        normalized = normalize(value)
        if normalized not in choices:
            raise argparse.ArgumentTypeError(
                f"Invalid {label} '{value}'. Expected one of: {', '.join(choices)}"
            )
        return normalized

    return _convert


__all__ = [
    "EXIT_CONFIG_ERROR",
    "EXIT_FAILURE",
    "EXIT_OK",
    "CliRunner",
    "build_parser",
    "run_cli",
]
