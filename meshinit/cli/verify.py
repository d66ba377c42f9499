"""`meshinit-verify` CLI entrypoint."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

from meshinit.cli import _common
from meshinit.db.client import ConnectionMode, get_client
from meshinit.db.initializer import InitializerError, InitSettings, verify_baseline

PROG_NAME = "meshinit-verify"
DESCRIPTION = "Check that the MeshCentral database matches the bootstrap baseline."

logger = logging.getLogger("meshinit.cli.verify")


def build_parser() -> argparse.ArgumentParser:
    return _common.build_parser(prog=PROG_NAME, description=DESCRIPTION)


def run(args: argparse.Namespace) -> int:
    meshcentral = args.app_config.meshcentral
    settings = InitSettings(
        database=meshcentral.database,
        username=meshcentral.username,
        password=meshcentral.password,
    )
    try:
        with get_client(mode=ConnectionMode.ADMIN, config=args.app_config) as client:
            status = verify_baseline(client, settings)
    except InitializerError as exc:
        logger.error("Verification failed: %s", exc, extra={"cli": "verify"})
        return _common.EXIT_FAILURE

    roles = ", ".join(f"{role}@{db}" for role, db in status.roles) or "-"
    logger.info("Database: %s", status.database)
    logger.info("  %s user %s (roles: %s)", _mark(status.user_exists), status.username, roles)
    logger.info("  %s roles scoped to %s", _mark(status.roles_scoped), status.database)
    logger.info(
        "  %s collection meshcentral (validator: %s)",
        _mark(status.collection_exists),
        "yes" if status.has_validator else "no",
    )
    logger.info(
        "  %s indexes (missing: %s)",
        _mark(not status.missing_fields),
        ", ".join(status.missing_fields) or "none",
    )

    if not status.ok:
        logger.warning("Database does not match the bootstrap baseline", extra={"cli": "verify"})
        return _common.EXIT_FAILURE
    logger.info("Database matches the bootstrap baseline")
    return _common.EXIT_OK


def _mark(passed: bool) -> str:
    return "✔" if passed else "✖"


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    return _common.run_cli(parser, argv, cli_name="verify", runner=run)


if __name__ == "__main__":  # pragma: no cover - manual execution guard
    raise SystemExit(main())


__all__ = ["build_parser", "main", "run"]
