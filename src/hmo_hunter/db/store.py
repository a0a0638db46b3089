"""Record store consumed by the ingestion pipeline.

The pipeline only needs three operations: upsert by external id, update by a
matching column, and a filtered read. ``SqliteRecordStore`` implements them
over aiosqlite with one JSON document per row.
"""

import asyncio
import json
import re
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Final, Protocol, Self

import aiosqlite
from pydantic import BaseModel, ConfigDict
from pydantic_core import to_jsonable_python

from hmo_hunter.errors import StoreError
from hmo_hunter.logging import get_logger

logger = get_logger(__name__)

_IDENTIFIER_RE: Final = re.compile(r"^[a-z_][a-z0-9_]*$")
_COLUMNS: Final = frozenset({"id", "external_id"})


class FilterOp(Enum):
    EQ = "eq"
    NE = "ne"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"
    LT = "lt"
    GT = "gt"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    op: FilterOp
    value: Any = None


class RecordFilter(BaseModel):
    """Conditions ANDed together, built fluently.

    Stale records are left out unless ``include_stale`` is set.
    """

    model_config = ConfigDict(frozen=True)

    conditions: tuple[Condition, ...] = ()
    max_rows: int | None = None
    include_stale: bool = False

    def _where(self, field: str, op: FilterOp, value: Any = None) -> Self:
        condition = Condition(field=field, op=op, value=value)
        return self.model_copy(update={"conditions": (*self.conditions, condition)})

    def eq(self, field: str, value: Any) -> Self:
        return self._where(field, FilterOp.EQ, value)

    def ne(self, field: str, value: Any) -> Self:
        return self._where(field, FilterOp.NE, value)

    def is_null(self, field: str) -> Self:
        return self._where(field, FilterOp.IS_NULL)

    def not_null(self, field: str) -> Self:
        return self._where(field, FilterOp.NOT_NULL)

    def lt(self, field: str, value: Any) -> Self:
        return self._where(field, FilterOp.LT, value)

    def gt(self, field: str, value: Any) -> Self:
        return self._where(field, FilterOp.GT, value)

    def contains(self, field: str, value: str) -> Self:
        return self._where(field, FilterOp.CONTAINS, value)

    def not_contains(self, field: str, value: str) -> Self:
        return self._where(field, FilterOp.NOT_CONTAINS, value)

    def limit(self, rows: int) -> Self:
        return self.model_copy(update={"max_rows": rows})

    def with_stale(self) -> Self:
        return self.model_copy(update={"include_stale": True})


class RecordStore(Protocol):
    """Persistence operations the pipeline depends on."""

    async def upsert(
        self, table: str, record: dict[str, Any], *, on_conflict: str = "external_id"
    ) -> dict[str, Any]: ...

    async def update(
        self, table: str, patch: dict[str, Any], *, match_column: str, match_value: Any
    ) -> int: ...

    async def select(
        self, table: str, record_filter: RecordFilter | None = None
    ) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


def _sql_value(value: Any) -> Any:
    """Encode a Python value the way json_extract will return it."""
    encoded = to_jsonable_python(value)
    if isinstance(encoded, bool):
        return int(encoded)
    if isinstance(encoded, (dict, list)):
        return json.dumps(encoded, separators=(",", ":"))
    return encoded


def _field_expr(field: str) -> tuple[str, list[Any]]:
    if field in _COLUMNS:
        return field, []
    return "json_extract(data, ?)", [f"$.{_check_identifier(field)}"]


def _compile(record_filter: RecordFilter) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []

    if not record_filter.include_stale:
        clauses.append("COALESCE(json_extract(data, '$.is_stale'), 0) = 0")

    for cond in record_filter.conditions:
        expr, expr_params = _field_expr(cond.field)
        params.extend(expr_params)
        match cond.op:
            case FilterOp.EQ:
                clauses.append(f"{expr} = ?")
                params.append(_sql_value(cond.value))
            case FilterOp.NE:
                clauses.append(f"({expr} IS NULL OR {expr} != ?)")
                params.extend(expr_params)
                params.append(_sql_value(cond.value))
            case FilterOp.IS_NULL:
                clauses.append(f"{expr} IS NULL")
            case FilterOp.NOT_NULL:
                clauses.append(f"{expr} IS NOT NULL")
            case FilterOp.LT:
                clauses.append(f"{expr} < ?")
                params.append(_sql_value(cond.value))
            case FilterOp.GT:
                clauses.append(f"{expr} > ?")
                params.append(_sql_value(cond.value))
            case FilterOp.CONTAINS:
                clauses.append(f"{expr} LIKE ?")
                params.append(f"%{cond.value}%")
            case FilterOp.NOT_CONTAINS:
                clauses.append(f"({expr} IS NULL OR {expr} NOT LIKE ?)")
                params.extend(expr_params)
                params.append(f"%{cond.value}%")

    sql = " WHERE " + " AND ".join(clauses) if clauses else ""
    sql += " ORDER BY rowid"
    if record_filter.max_rows is not None:
        sql += " LIMIT ?"
        params.append(record_filter.max_rows)
    return sql, params


class SqliteRecordStore:
    """SQLite-backed record store keeping each record as a JSON document."""

    def __init__(self, db_path: str) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._tables: set[str] = set()
        self._write_lock = asyncio.Lock()
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Ensure the directory for the database exists."""
        if self.db_path != ":memory:":
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self._tables.clear()

    async def _ensure_table(self, table: str) -> aiosqlite.Connection:
        conn = await self._get_connection()
        name = _check_identifier(table)
        if name not in self._tables:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {name} (
                    id TEXT PRIMARY KEY,
                    external_id TEXT UNIQUE,
                    data TEXT NOT NULL
                )
            """)
            await conn.commit()
            self._tables.add(name)
            logger.debug("table_ready", table=name, db_path=self.db_path)
        return conn

    async def _fetch(
        self, conn: aiosqlite.Connection, table: str, where: str, params: list[Any]
    ) -> list[dict[str, Any]]:
        cursor = await conn.execute(f"SELECT id, data FROM {table}{where}", params)
        rows = await cursor.fetchall()
        records = []
        for row in rows:
            record: dict[str, Any] = json.loads(row["data"])
            record["id"] = row["id"]
            records.append(record)
        return records

    async def upsert(
        self, table: str, record: dict[str, Any], *, on_conflict: str = "external_id"
    ) -> dict[str, Any]:
        """Insert ``record`` or merge it into the row with the same external id.

        Keys present in ``record`` overwrite stored values; keys it lacks are
        kept. Returns the stored record including its ``id``.
        """
        if on_conflict != "external_id":
            raise ValueError("Only external_id is supported as a conflict key")
        external_id = record.get("external_id")
        if not external_id:
            raise StoreError(f"Cannot upsert into {table} without an external_id")

        data = {k: v for k, v in to_jsonable_python(record).items() if k != "id"}
        async with self._write_lock:
            conn = await self._ensure_table(table)
            try:
                existing = await self._fetch(
                    conn, table, " WHERE external_id = ?", [external_id]
                )
                if existing:
                    merged = {**existing[0], **data}
                    record_id = merged.pop("id")
                    await conn.execute(
                        f"UPDATE {table} SET data = ? WHERE id = ?",
                        (json.dumps(merged), record_id),
                    )
                else:
                    record_id = uuid.uuid4().hex
                    merged = data
                    await conn.execute(
                        f"INSERT INTO {table} (id, external_id, data) VALUES (?, ?, ?)",
                        (record_id, external_id, json.dumps(merged)),
                    )
                await conn.commit()
            except aiosqlite.Error as e:
                raise StoreError(f"Upsert into {table} failed: {e}") from e
        return {**merged, "id": record_id}

    async def update(
        self, table: str, patch: dict[str, Any], *, match_column: str, match_value: Any
    ) -> int:
        """Merge ``patch`` into every row where ``match_column`` equals ``match_value``.

        Returns the number of rows changed.
        """
        data = to_jsonable_python(patch)
        data.pop("id", None)
        if "external_id" in data and match_column != "external_id":
            raise StoreError("external_id cannot be changed by update")

        expr, params = _field_expr(match_column)
        async with self._write_lock:
            conn = await self._ensure_table(table)
            try:
                rows = await self._fetch(
                    conn, table, f" WHERE {expr} = ?", [*params, _sql_value(match_value)]
                )
                for row in rows:
                    record_id = row.pop("id")
                    row.update(data)
                    await conn.execute(
                        f"UPDATE {table} SET data = ? WHERE id = ?",
                        (json.dumps(row), record_id),
                    )
                await conn.commit()
            except aiosqlite.Error as e:
                raise StoreError(f"Update of {table} failed: {e}") from e
        return len(rows)

    async def select(
        self, table: str, record_filter: RecordFilter | None = None
    ) -> list[dict[str, Any]]:
        """Read records matching ``record_filter`` in insertion order."""
        where, params = _compile(record_filter or RecordFilter())
        conn = await self._ensure_table(table)
        try:
            return await self._fetch(conn, table, where, params)
        except aiosqlite.Error as e:
            raise StoreError(f"Select from {table} failed: {e}") from e

    async def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        """Fetch one record by id, stale or not."""
        rows = await self.select(table, RecordFilter().eq("id", record_id).with_stale())
        return rows[0] if rows else None

    async def count(self, table: str, record_filter: RecordFilter | None = None) -> int:
        return len(await self.select(table, record_filter))
