"""`meshinit` CLI entrypoint."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

from meshinit.cli import _common
from meshinit.db.client import ConnectionMode, get_client
from meshinit.db.initializer import InitSettings, initialize

PROG_NAME = "meshinit"
DESCRIPTION = "Provision the MeshCentral database, user, collection and indexes in MongoDB."

logger = logging.getLogger("meshinit.cli.init")


def build_parser() -> argparse.ArgumentParser:
    parser = _common.build_parser(prog=PROG_NAME, description=DESCRIPTION)
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when any initialization step failed.",
    )
    return parser


def run(args: argparse.Namespace) -> int:
    meshcentral = args.app_config.meshcentral
    settings = InitSettings(
        database=meshcentral.database,
        username=meshcentral.username,
        password=meshcentral.password,
    )
    with get_client(mode=ConnectionMode.ADMIN, config=args.app_config) as client:
        report = initialize(client, settings)

    if args.strict and not report.ok:
        logger.error(
            "Initialization finished with failed steps: %s",
            ", ".join(step.step for step in report.failed_steps),
            extra={"cli": "init"},
        )
        return _common.EXIT_FAILURE
    return _common.EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    return _common.run_cli(parser, argv, cli_name="init", runner=run)


if __name__ == "__main__":  # pragma: no cover - manual execution guard
    raise SystemExit(main())


__all__ = ["build_parser", "main", "run"]
