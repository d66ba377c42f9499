"""Idempotent bootstrap of the MeshCentral database, user, collection and indexes."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pymongo import ASCENDING, IndexModel, MongoClient
from pymongo.database import Database
from pymongo.errors import CollectionInvalid, OperationFailure, PyMongoError

logger = logging.getLogger(__name__)

__all__ = [
    "BANNER",
    "COLLECTION_NAME",
    "COLLECTION_VALIDATOR",
    "INDEX_FIELDS",
    "USER_ROLES",
    "BaselineStatus",
    "InitReport",
    "InitSettings",
    "InitializerError",
    "StepResult",
    "StepStatus",
    "create_collection",
    "create_indexes",
    "create_user",
    "initialize",
    "select_database",
    "verify_baseline",
]


BANNER = "=" * 49
COLLECTION_NAME = "meshcentral"
COLLECTION_VALIDATOR: dict[str, Any] = {
    "$jsonSchema": {
        "bsonType": "object",
        "description": "MeshCentral main collection",
    }
}
INDEX_FIELDS = ("type", "domain", "email", "meshid")
USER_ROLES = ("readWrite", "dbAdmin")

_USER_ALREADY_EXISTS = 51003
_NAMESPACE_EXISTS = 48
_NO_DATABASE = "no database selected"


class InitializerError(RuntimeError):
    """Raised when inspecting the bootstrapped database fails."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class StepStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class StepResult:
    step: str
    status: StepStatus
    message: str | None = None


@dataclass(slots=True, frozen=True)
class InitSettings:
    database: str
    username: str
    password: str

    @classmethod
    def from_mapping(cls, env: Mapping[str, Any]) -> InitSettings:
        """Build settings from a loose mapping, passing missing values through as empty."""
        return cls(
            database=str(env.get("database") or ""),
            username=str(env.get("username") or ""),
            password=str(env.get("password") or ""),
        )


@dataclass(slots=True)
class InitReport:
    database: str
    username: str
    steps: list[StepResult] = field(default_factory=list)

    @property
    def failed_steps(self) -> list[StepResult]:
        return [step for step in self.steps if step.status is StepStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed_steps


@dataclass(slots=True, frozen=True)
class BaselineStatus:
    database: str
    username: str
    user_exists: bool
    roles: tuple[tuple[str, str], ...]
    collection_exists: bool
    has_validator: bool
    indexed_fields: tuple[str, ...]

    @property
    def missing_fields(self) -> tuple[str, ...]:
        return tuple(name for name in INDEX_FIELDS if name not in self.indexed_fields)

    @property
    def roles_scoped(self) -> bool:
        expected = {(role, self.database) for role in USER_ROLES}
        return set(self.roles) == expected and len(self.roles) == len(expected)

    @property
    def ok(self) -> bool:
        return (
            self.user_exists
            and self.roles_scoped
            and self.collection_exists
            and not self.missing_fields
        )


def select_database(client: MongoClient, name: str) -> Database:
    """Return the handle every later step runs against.

    No existence check is made: MongoDB creates the database on first write.
    """
    return client[name]


def create_user(db: Database, username: str, password: str) -> StepResult:
    logger.info("Creating MeshCentral user: %s", username)
    roles = [{"role": role, "db": db.name} for role in USER_ROLES]
    try:
        db.command("createUser", username, pwd=password, roles=roles)
    except PyMongoError as exc:
        status = (
            StepStatus.SKIPPED if _error_code(exc) == _USER_ALREADY_EXISTS else StepStatus.FAILED
        )
        return _warn("create_user", status, "⚠ User creation failed (may already exist): %s", exc)
    logger.info(
        "✓ Successfully created MeshCentral user",
        extra={"step": "create_user", "status": StepStatus.SUCCESS.value},
    )
    return StepResult("create_user", StepStatus.SUCCESS)


def create_collection(db: Database) -> StepResult:
    try:
        db.create_collection(COLLECTION_NAME, validator=COLLECTION_VALIDATOR)
    except CollectionInvalid as exc:
        return _warn(
            "create_collection",
            StepStatus.SKIPPED,
            "⚠ Collection creation skipped (may already exist): %s",
            exc,
        )
    except PyMongoError as exc:
        status = (
            StepStatus.SKIPPED if _error_code(exc) == _NAMESPACE_EXISTS else StepStatus.FAILED
        )
        return _warn(
            "create_collection",
            status,
            "⚠ Collection creation skipped (may already exist): %s",
            exc,
        )
    logger.info(
        "✓ Created %s collection",
        COLLECTION_NAME,
        extra={"step": "create_collection", "status": StepStatus.SUCCESS.value},
    )
    return StepResult("create_collection", StepStatus.SUCCESS)


def create_indexes(db: Database) -> StepResult:
    models = [IndexModel([(name, ASCENDING)]) for name in INDEX_FIELDS]
    try:
        db[COLLECTION_NAME].create_indexes(models)
    except PyMongoError as exc:
        return _warn("create_indexes", StepStatus.FAILED, "⚠ Index creation warning: %s", exc)
    logger.info(
        "✓ Created performance indexes",
        extra={"step": "create_indexes", "status": StepStatus.SUCCESS.value},
    )
    return StepResult("create_indexes", StepStatus.SUCCESS)


def initialize(client: MongoClient, settings: InitSettings) -> InitReport:
    """Provision the database baseline and report each step's outcome.

    Steps run in a fixed order and never raise: a store error is logged as a
    warning and recorded in the report, and the next step still runs. The
    completion banner is printed whatever the outcome; callers that care
    about partial failure inspect ``InitReport.ok``.
    """
    report = InitReport(database=settings.database, username=settings.username)

    logger.info(BANNER)
    logger.info("Starting MongoDB initialization for MeshCentral")
    logger.info(BANNER)

    logger.info("Creating MeshCentral database: %s", settings.database)
    db: Database | None
    try:
        db = select_database(client, settings.database)
    except PyMongoError as exc:
        db = None
        report.steps.append(
            _warn("select_database", StepStatus.FAILED, "⚠ Database selection failed: %s", exc)
        )
    else:
        report.steps.append(StepResult("select_database", StepStatus.SUCCESS))

    if db is None:
        for step in ("create_user", "create_collection", "create_indexes"):
            report.steps.append(StepResult(step, StepStatus.FAILED, _NO_DATABASE))
    else:
        report.steps.append(create_user(db, settings.username, settings.password))
        report.steps.append(create_collection(db))
        report.steps.append(create_indexes(db))

    logger.info(BANNER)
    logger.info(
        "MongoDB initialization completed successfully",
        extra={"failed_steps": [step.step for step in report.failed_steps]},
    )
    logger.info("Database: %s", settings.database)
    logger.info("User: %s", settings.username)
    logger.info(BANNER)
    return report


def verify_baseline(client: MongoClient, settings: InitSettings) -> BaselineStatus:
    """Inspect the database and describe how far it matches the bootstrap baseline."""
    try:
        db = select_database(client, settings.database)
        users_info = db.command("usersInfo", settings.username)
        collections = list(db.list_collections(filter={"name": COLLECTION_NAME}))
        indexes = db[COLLECTION_NAME].index_information() if collections else {}
    except PyMongoError as exc:
        logger.exception("Baseline inspection failed", extra={"database": settings.database})
        raise InitializerError("verify_baseline", str(exc)) from exc

    users = users_info.get("users") or []
    roles: tuple[tuple[str, str], ...] = ()
    if users:
        roles = tuple((entry["role"], entry["db"]) for entry in users[0].get("roles", []))
    options = collections[0].get("options", {}) if collections else {}

    return BaselineStatus(
        database=settings.database,
        username=settings.username,
        user_exists=bool(users),
        roles=roles,
        collection_exists=bool(collections),
        has_validator="validator" in options,
        indexed_fields=_single_field_indexes(indexes),
    )


def _single_field_indexes(indexes: Mapping[str, Mapping[str, Any]]) -> tuple[str, ...]:
    fields: list[str] = []
    for info in indexes.values():
        key: Sequence[tuple[str, Any]] = info.get("key", [])
        if len(key) == 1 and key[0][0] != "_id" and key[0][1] == ASCENDING:
            fields.append(key[0][0])
    return tuple(sorted(fields))


def _warn(step: str, status: StepStatus, template: str, exc: Exception) -> StepResult:
    logger.warning(template, exc, extra={"step": step, "status": status.value})
    return StepResult(step, status, str(exc))


def _error_code(exc: PyMongoError) -> int | None:
    if isinstance(exc, OperationFailure):
        return exc.code
    return None
