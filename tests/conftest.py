from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import meshinit.config as app_config
import pytest
from meshinit.db.client import ConnectionMode, get_client, reset_clients
from meshinit.db.initializer import InitSettings
from pymongo import IndexModel
from pymongo.errors import CollectionInvalid, InvalidName, OperationFailure, PyMongoError

CONFIG_KEYS = [
    "MONGODB_URI",
    "MONGO_INITDB_ROOT_USERNAME",
    "MONGO_INITDB_ROOT_PASSWORD",
    "MONGO_AUTH_SOURCE",
    "MONGO_SERVER_SELECTION_TIMEOUT_MS",
    "MONGO_INITDB_DATABASE",
    "MESHCENTRAL_USER",
    "MESHCENTRAL_PASSWORD",
]
# Captured before the autouse fixture scrubs the environment for unit tests.
_RUNTIME_ENVIRON = {key: os.environ[key] for key in CONFIG_KEYS if key in os.environ}


@dataclass(slots=True)
class FakeStore:
    """In-memory stand-in for the parts of a MongoDB server the initializer touches."""

    users: dict[tuple[str, str], list[dict[str, str]]] = field(default_factory=dict)
    collections: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    failures: dict[str, PyMongoError] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    def fail(self, operation: str, error: PyMongoError) -> None:
        self.failures[operation] = error

    def fail_everything(self, error: PyMongoError) -> None:
        for operation in ("createUser", "createCollection", "createIndexes", "usersInfo"):
            self.fail(operation, error)

    def record(self, operation: str) -> None:
        self.calls.append(operation)
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def indexes(self, db_name: str, collection: str) -> dict[str, dict[str, Any]]:
        return self.collections[(db_name, collection)]["indexes"]


class FakeCollection:
    def __init__(self, store: FakeStore, db_name: str, name: str) -> None:
        self._store = store
        self._db_name = db_name
        self.name = name

    def create_indexes(self, models: list[IndexModel]) -> list[str]:
        self._store.record("createIndexes")
        entry = self._store.collections.setdefault(
            (self._db_name, self.name), _new_collection_entry({})
        )
        names: list[str] = []
        for model in models:
            document = model.document
            entry["indexes"][document["name"]] = {"key": list(document["key"].items())}
            names.append(document["name"])
        return names

    def index_information(self) -> dict[str, dict[str, Any]]:
        self._store.record("indexInformation")
        entry = self._store.collections.get((self._db_name, self.name))
        return dict(entry["indexes"]) if entry else {}


class FakeDatabase:
    def __init__(self, store: FakeStore, name: str) -> None:
        self._store = store
        self.name = name

    def __getitem__(self, name: str) -> FakeCollection:
        return FakeCollection(self._store, self.name, name)

    def command(self, command: str, value: Any = 1, **kwargs: Any) -> dict[str, Any]:
        self._store.record(command)
        if command == "createUser":
            key = (self.name, value)
            if key in self._store.users:
                raise OperationFailure(
                    f'User "{value}@{self.name}" already exists',
                    code=51003,
                    details={"code": 51003, "codeName": "Location51003"},
                )
            self._store.users[key] = [dict(role) for role in kwargs["roles"]]
            return {"ok": 1.0}
        if command == "usersInfo":
            roles = self._store.users.get((self.name, value))
            if roles is None:
                return {"users": [], "ok": 1.0}
            return {"users": [{"user": value, "db": self.name, "roles": roles}], "ok": 1.0}
        return {"ok": 1.0}

    def create_collection(self, name: str, **options: Any) -> FakeCollection:
        self._store.record("createCollection")
        key = (self.name, name)
        if key in self._store.collections:
            raise CollectionInvalid(f"collection {name} already exists")
        self._store.collections[key] = _new_collection_entry(options)
        return FakeCollection(self._store, self.name, name)

    def list_collections(self, filter: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        self._store.record("listCollections")
        wanted = (filter or {}).get("name")
        return [
            {"name": coll_name, "options": entry["options"]}
            for (db_name, coll_name), entry in self._store.collections.items()
            if db_name == self.name and (wanted is None or coll_name == wanted)
        ]


class FakeClient:
    def __init__(self, store: FakeStore | None = None) -> None:
        self.store = store or FakeStore()
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        if not name:
            raise InvalidName("database name cannot be the empty string")
        return FakeDatabase(self.store, name)

    @property
    def admin(self) -> FakeDatabase:
        return FakeDatabase(self.store, "admin")

    def close(self) -> None:
        self.closed = True


def _new_collection_entry(options: dict[str, Any]) -> dict[str, Any]:
    return {"options": dict(options), "indexes": {"_id_": {"key": [("_id", 1)]}}}


@pytest.fixture()
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture()
def example_settings() -> InitSettings:
    return InitSettings(database="meshcentral", username="mc_app", password="x")


@pytest.fixture(autouse=True)
def _isolated_config(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Iterator[None]:
    for key in CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    scratch = tmp_path_factory.mktemp("config")
    monkeypatch.setenv("MESHINIT_ENV_FILE", str(scratch / "missing.env"))
    monkeypatch.setenv("MESHINIT_CONFIG_FILE", str(scratch / "missing.toml"))
    monkeypatch.setattr(app_config, "_CONFIG_CACHE", None)
    yield
    reset_clients()


@dataclass(slots=True)
class LiveDatabaseContext:
    client: Any
    settings: InitSettings

    def cleanup(self) -> None:
        db = self.client[self.settings.database]
        try:
            db.command("dropUser", self.settings.username)
        except OperationFailure:
            pass
        self.client.drop_database(self.settings.database)


@pytest.fixture()
def live_context() -> Iterator[LiveDatabaseContext]:
    """A throwaway database on a real MongoDB server, configured via the process environment."""
    suffix = uuid4().hex[:8]
    environ = {
        "MONGO_INITDB_DATABASE": f"meshinit_test_{suffix}",
        "MESHCENTRAL_USER": f"mc_test_{suffix}",
        "MESHCENTRAL_PASSWORD": uuid4().hex,
    }
    try:
        config = app_config.load_config(
            config_file=app_config.DEFAULT_CONFIG_FILE,
            env_file=app_config.DEFAULT_ENV_FILE,
            environ={**_RUNTIME_ENVIRON, **environ},
        )
    except app_config.ConfigError as exc:  # pragma: no cover - depends on local setup
        pytest.skip(f"Database tests skipped: {exc}")

    with get_client(mode=ConnectionMode.ADMIN, config=config) as client:
        try:
            client.admin.command("ping")
        except PyMongoError as exc:  # pragma: no cover - depends on environment
            pytest.skip(f"Database tests skipped: MongoDB unreachable ({exc}).")
        context = LiveDatabaseContext(
            client=client,
            settings=InitSettings(
                database=config.meshcentral.database,
                username=config.meshcentral.username,
                password=config.meshcentral.password,
            ),
        )
        try:
            yield context
        finally:
            context.cleanup()


