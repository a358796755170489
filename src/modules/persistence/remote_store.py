"""
Tier-3 remote progress store.

Purpose
-------
Authoritative per-user progress document. ``RemoteProgressStore`` is the
contract the reconciler talks to; ``SqlAlchemyRemoteStore`` implements it
over the ``user_progress`` PostgreSQL table.

Contract
--------
- ``fetch(user_id)``: the row as a dict of remote column names, or ``None``
- ``upsert(user_id, fields)``: partial update of an existing row; raises
  ``RemoteStoreError(NOT_FOUND)`` when the row does not exist
- ``create(user_id, fields)``: insert a new row; a concurrent create raises
  ``RemoteStoreError(UNIQUE_VIOLATION)``

Error Translation
-----------------
==========  ==========================  =============================
SQLSTATE    meaning                     RemoteErrorCode
==========  ==========================  =============================
42703       undefined column            UNKNOWN_FIELD
22003       numeric value out of range  NUMERIC_OUT_OF_RANGE
23505       unique violation            UNIQUE_VIOLATION
==========  ==========================  =============================

Connection loss, timeouts and an uninitialized engine become
``RemoteUnavailableError``, which is retryable.

Architecture Notes
------------------
Statements are built from lightweight ``table()``/``column()`` constructs
over the columns actually being written, and reads use ``SELECT *``. A
remote schema that lags the ORM model therefore surfaces as a per-column
rejection instead of failing every statement.
"""

from __future__ import annotations

import asyncio
import json
import re
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError, DataError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.types import TypeEngine

from src.core.database.service import DatabaseNotInitializedError, DatabaseService
from src.core.exceptions import ErrorSeverity, WaypointInfrastructureException
from src.core.logging.logger import get_logger
from src.database.models.progression import UserProgress

logger = get_logger(__name__)

TABLE_NAME = UserProgress.__tablename__

_UNDEFINED_COLUMN = "42703"
_NUMERIC_OUT_OF_RANGE = "22003"
_UNIQUE_VIOLATION = "23505"

# asyncpg rejects oversized int4 parameters client-side ("value out of int32 range").
_OUT_OF_RANGE = re.compile(r"out of (?:\w+ )?range")

_COLUMN_PATTERNS = (
    re.compile(r'column "(\w+)"'),
    re.compile(r"'(\w+)' column"),
    re.compile(r"column (\w+)"),
)


class RemoteErrorCode(str, Enum):
    UNKNOWN_FIELD = "unknown_field"
    NUMERIC_OUT_OF_RANGE = "numeric_out_of_range"
    NOT_FOUND = "not_found"
    UNIQUE_VIOLATION = "unique_violation"
    REJECTED = "rejected"


class RemoteStoreError(WaypointInfrastructureException):
    """Permanent rejection from the remote store."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, code: RemoteErrorCode, message: str, field: Optional[str] = None) -> None:
        self.code = code
        self.field = field
        super().__init__(
            message,
            details={"code": code.value, "field": field},
            error_code=f"REMOTE_{code.name}",
        )


class RemoteUnavailableError(WaypointInfrastructureException):
    """Transient failure reaching the remote store."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Remote store unavailable during {operation}",
            details={
                "operation": operation,
                "original_error_type": type(original_error).__name__ if original_error else None,
            },
            error_code="REMOTE_UNAVAILABLE",
        )


@runtime_checkable
class RemoteProgressStore(Protocol):
    async def fetch(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def upsert(self, user_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def create(self, user_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]: ...


# ============================================================================
# SQLALCHEMY IMPLEMENTATION
# ============================================================================


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _column_from_message(message: str) -> Optional[str]:
    for pattern in _COLUMN_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


class SqlAlchemyRemoteStore:
    """
    ``RemoteProgressStore`` over ``DatabaseService`` sessions.

    Example
    -------
    >>> await DatabaseService.initialize()
    >>> store = SqlAlchemyRemoteStore()
    >>> await store.create("u1", {"xp": 0, "level": 1})
    >>> await store.upsert("u1", {"xp": 40})
    """

    def __init__(self, table_name: str = TABLE_NAME) -> None:
        self.table_name = table_name
        self._known_types: Dict[str, TypeEngine[Any]] = {
            column.name: column.type for column in UserProgress.__table__.columns
        }
        self._json_columns = {
            name for name, type_ in self._known_types.items() if isinstance(type_, sa.JSON)
        }

    def _column_type(self, name: str, value: Any) -> TypeEngine[Any]:
        if name in self._known_types:
            return self._known_types[name]
        if isinstance(value, (list, dict)):
            return sa.JSON()
        if isinstance(value, bool):
            return sa.Boolean()
        if isinstance(value, int):
            return sa.Integer()
        return sa.String()

    def _table(self, fields: Mapping[str, Any]) -> sa.TableClause:
        columns = [sa.column("user_id", sa.String())]
        columns += [sa.column(name, self._column_type(name, value)) for name, value in fields.items()]
        return sa.table(self.table_name, *columns)

    def _decode_row(self, row: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        decoded = dict(row)
        for name in self._json_columns:
            value = decoded.get(name)
            if isinstance(value, str):
                try:
                    decoded[name] = json.loads(value)
                except ValueError:
                    logger.warning(
                        "Undecodable JSON column from remote",
                        extra={"column": name, "table": self.table_name},
                    )
        return decoded

    def _translate(self, operation: str, exc: BaseException) -> WaypointInfrastructureException:
        if isinstance(exc, (DatabaseNotInitializedError, OSError, asyncio.TimeoutError)):
            return RemoteUnavailableError(operation, exc)
        if isinstance(exc, DBAPIError):
            state = _sqlstate(exc)
            message = str(exc.orig) if exc.orig is not None else str(exc)
            if state == _UNDEFINED_COLUMN:
                return RemoteStoreError(
                    RemoteErrorCode.UNKNOWN_FIELD, message, _column_from_message(message)
                )
            if state == _NUMERIC_OUT_OF_RANGE or isinstance(exc, DataError) or _OUT_OF_RANGE.search(message):
                return RemoteStoreError(RemoteErrorCode.NUMERIC_OUT_OF_RANGE, message)
            if state == _UNIQUE_VIOLATION or (state is None and isinstance(exc, IntegrityError)):
                return RemoteStoreError(RemoteErrorCode.UNIQUE_VIOLATION, message)
            if exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError)):
                return RemoteUnavailableError(operation, exc)
            return RemoteStoreError(RemoteErrorCode.REJECTED, message)
        return RemoteUnavailableError(operation, exc)

    async def fetch(self, user_id: str) -> Optional[Dict[str, Any]]:
        query = sa.text(f"SELECT * FROM {self.table_name} WHERE user_id = :user_id")
        try:
            async with DatabaseService.get_session() as session:
                result = await session.execute(query, {"user_id": user_id})
                row = result.mappings().first()
        except (DBAPIError, DatabaseNotInitializedError, OSError, asyncio.TimeoutError) as exc:
            raise self._translate("fetch", exc) from exc
        return self._decode_row(row)

    async def upsert(self, user_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Raises
        ------
        RemoteStoreError
            NOT_FOUND when no row exists, or a column/range rejection
        RemoteUnavailableError
            On connection failures
        """
        if not fields:
            row = await self.fetch(user_id)
            if row is None:
                raise RemoteStoreError(RemoteErrorCode.NOT_FOUND, f"no progress for {user_id}")
            return row

        table = self._table(fields)
        statement = (
            sa.update(table)
            .where(table.c.user_id == user_id)
            .values(**dict(fields))
            .returning(sa.literal_column("*"))
        )
        try:
            async with DatabaseService.get_transaction() as session:
                result = await session.execute(statement)
                row = result.mappings().first()
        except (DBAPIError, DatabaseNotInitializedError, OSError, asyncio.TimeoutError) as exc:
            raise self._translate("upsert", exc) from exc

        if row is None:
            raise RemoteStoreError(RemoteErrorCode.NOT_FOUND, f"no progress for {user_id}")
        logger.debug(
            "Remote progress updated",
            extra={"user_id": user_id, "columns": sorted(fields)},
        )
        return self._decode_row(row) or {}

    async def create(self, user_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        table = self._table(fields)
        statement = (
            sa.insert(table)
            .values(user_id=user_id, **dict(fields))
            .returning(sa.literal_column("*"))
        )
        try:
            async with DatabaseService.get_transaction() as session:
                result = await session.execute(statement)
                row = result.mappings().first()
        except (DBAPIError, DatabaseNotInitializedError, OSError, asyncio.TimeoutError) as exc:
            raise self._translate("create", exc) from exc

        logger.info("Remote progress created", extra={"user_id": user_id})
        return self._decode_row(row) or {}
