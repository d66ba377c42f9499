from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any

from meshinit.config import AppConfig, get_config, mask_uri

try:  # pragma: no cover - exercised in tests via monkeypatching
    from pymongo import MongoClient
    from pymongo.errors import PyMongoError
except ImportError as exc:  # pragma: no cover - dependency missing at runtime
    raise RuntimeError("pymongo is required. Install it with `pip install pymongo`.") from exc

logger = logging.getLogger(__name__)


class ConnectionMode(str, Enum):
    ADMIN = "admin"
    APP = "app"

    @classmethod
    def coerce(cls, value: ConnectionMode | str | None) -> ConnectionMode:
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.ADMIN
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown connection mode: {value!r}")


@dataclass(frozen=True, slots=True)
class ClientSettings:
    uri: str
    appname: str
    username: str | None = None
    password: str | None = None
    auth_source: str | None = None
    server_selection_timeout_ms: int = 5_000

    def as_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "appname": self.appname,
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
        }
        if self.username:
            kwargs["username"] = self.username
            kwargs["password"] = self.password or ""
            if self.auth_source:
                kwargs["authSource"] = self.auth_source
        return kwargs


_CLIENTS: dict[ConnectionMode, MongoClient] = {}
_CLIENT_LOCK = Lock()


@contextmanager
def get_client(
    *,
    mode: ConnectionMode | str = ConnectionMode.ADMIN,
    config: AppConfig | None = None,
) -> Iterator[MongoClient]:
    """Yield a cached MongoClient authenticated for the requested mode.

    ``config`` is only consulted when the client for ``mode`` is first built;
    without it the default configuration sources are read.
    """

    resolved = ConnectionMode.coerce(mode)
    client = _get_client(resolved, config)
    try:
        yield client
    except PyMongoError:
        logger.exception("MongoDB operation failed", extra={"mode": resolved.value})
        raise


def reset_clients() -> None:
    """Close all cached clients (used by tests)."""

    with _CLIENT_LOCK:
        for client in _CLIENTS.values():
            try:
                client.close()
            except Exception:  # pragma: no cover - defensive
                logger.exception("Failed to close MongoDB client cleanly")
        _CLIENTS.clear()


def doctor(
    *,
    mode: ConnectionMode | str = ConnectionMode.ADMIN,
    config: AppConfig | None = None,
) -> bool:
    """Run a `ping` to verify the MongoDB connection for the given mode."""

    resolved = ConnectionMode.coerce(mode)
    try:
        with get_client(mode=resolved, config=config) as client:
            client.admin.command("ping")
    except Exception as exc:
        print(f"MongoDB connection failed ({resolved.value} mode): {exc}", file=sys.stderr)
        return False

    print(f"MongoDB connection OK ({resolved.value} mode).", file=sys.stdout)
    return True


def build_client_settings(config: AppConfig, mode: ConnectionMode) -> ClientSettings:
    mongo = config.mongo
    if mode is ConnectionMode.APP:
        username: str | None = config.meshcentral.username
        password: str | None = config.meshcentral.password
        auth_source: str | None = config.meshcentral.database
    else:
        username = mongo.root_username
        password = mongo.root_password
        auth_source = mongo.auth_source
    return ClientSettings(
        uri=mongo.uri,
        appname=f"meshinit:{mode.value}",
        username=username,
        password=password,
        auth_source=auth_source,
        server_selection_timeout_ms=mongo.server_selection_timeout_ms,
    )


def _get_client(mode: ConnectionMode, config: AppConfig | None) -> MongoClient:
    with _CLIENT_LOCK:
        client = _CLIENTS.get(mode)
        if client is None:
            client = _create_client(mode, config or get_config())
            _CLIENTS[mode] = client
        return client


def _create_client(mode: ConnectionMode, config: AppConfig) -> MongoClient:
    settings = build_client_settings(config, mode)
    client = MongoClient(settings.uri, **settings.as_kwargs())
    logger.debug(
        "Initialized MongoDB client",
        extra={
            "mode": mode.value,
            "uri": mask_uri(settings.uri),
            "username": settings.username,
            "auth_source": settings.auth_source,
        },
    )
    return client
