"""`python -m meshinit.config doctor`: check configuration, then MongoDB reachability."""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from pathlib import Path

from meshinit.config import doctor, load_config
from meshinit.db import client


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m meshinit.config",
        description="Diagnose meshinit configuration and MongoDB connectivity.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    doctor_parser = subparsers.add_parser(
        "doctor", help="Validate configuration and ping MongoDB with each credential set."
    )
    doctor_parser.add_argument("--env-file", type=Path, help="Path to the .env file to read.")
    doctor_parser.add_argument("--config-file", type=Path, help="Path to config.toml.")
    doctor_parser.add_argument(
        "--mode",
        action="append",
        choices=[mode.value for mode in client.ConnectionMode],
        help="Credential set to ping (repeatable; default: all).",
    )
    doctor_parser.add_argument(
        "--offline",
        action="store_true",
        help="Only validate configuration; do not contact MongoDB.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if not doctor(env_file=args.env_file, config_file=args.config_file):
        return 2
    if args.offline:
        return 0

    # The application user only exists after `meshinit` has run, so a failing
    # app-mode ping right after a fresh deploy is expected.
    config = load_config(env_file=args.env_file, config_file=args.config_file)
    modes = args.mode or [mode.value for mode in client.ConnectionMode]
    results = [client.doctor(mode=mode, config=config) for mode in modes]
    return 0 if all(results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
