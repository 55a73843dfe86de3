"""
SQLite Introspector

File-based SQLite access through the standard sqlite3 driver. The driver
is synchronous, so calls run in worker threads via asyncio.to_thread.
The database file is opened read-only.
"""

import asyncio
import logging
import re
import sqlite3
import time
from pathlib import Path
from typing import Any

from sqlagent.connectors.base import (
    ConnectionError,
    QueryError,
    QueryResult,
    SchemaError,
    SchemaIntrospector,
)
from sqlagent.models.schema import ColumnInfo, DatabaseSchema, RelationshipInfo, TableInfo

logger = logging.getLogger(__name__)


class SQLiteIntrospector(SchemaIntrospector):
    """SQLite schema introspector and executor."""

    dialect = "sqlite"

    ERROR_REWRITES = [
        (re.compile(r"no such column: ([\w.]+)", re.IGNORECASE), "Invalid column name '{}'."),
        (re.compile(r"no such table: ([\w.]+)", re.IGNORECASE), "Invalid object name '{}'."),
        (re.compile(r"ambiguous column name: ([\w.]+)", re.IGNORECASE), "Ambiguous column name '{}'."),
        (re.compile(r'near "([^"]+)": syntax error', re.IGNORECASE), "Incorrect syntax near '{}'."),
    ]

    def __init__(self, database: str, timeout: int = 30, **kwargs):
        super().__init__(database=database, timeout=timeout, **kwargs)

    async def execute(self, query: str, timeout: int | None = None) -> QueryResult:
        query_timeout = timeout or self.timeout
        start_time = time.perf_counter()
        try:
            rows, columns = await asyncio.to_thread(self._execute_sync, query, query_timeout)
        except sqlite3.OperationalError as exc:
            if "unable to open database" in str(exc).lower():
                raise ConnectionError(f"Connection to SQLite file failed: {exc}") from exc
            logger.error(f"SQLite query failed: {exc}\nQuery: {query[:200]}...")
            raise QueryError(self.canonical_error_message(exc)) from exc
        except sqlite3.Error as exc:
            logger.error(f"SQLite query failed: {exc}\nQuery: {query[:200]}...")
            raise QueryError(self.canonical_error_message(exc)) from exc
        return QueryResult(
            rows=rows,
            row_count=len(rows),
            columns=columns,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    async def scan(self) -> DatabaseSchema:
        try:
            schema = await asyncio.to_thread(self._scan_sync)
        except sqlite3.OperationalError as exc:
            if "unable to open database" in str(exc).lower():
                raise ConnectionError(f"Connection to SQLite file failed: {exc}") from exc
            raise SchemaError(f"Failed to introspect schema: {exc}") from exc
        logger.info(
            f"Introspected SQLite schema: {len(schema.tables)} tables, "
            f"{len(schema.relationships)} relationships"
        )
        return schema

    def is_transient_error(self, exc: BaseException) -> bool:
        message = str(exc.__cause__ or exc).lower()
        return "database is locked" in message or "database is busy" in message

    def quote_identifier(self, name: str) -> str:
        return ".".join(
            "[" + part.replace("]", "]]") + "]" for part in self._split_identifier(name)
        )

    def _open(self, query_timeout: int | None = None) -> sqlite3.Connection:
        uri = f"{Path(self.database).resolve().as_uri()}?mode=ro"
        return sqlite3.connect(uri, uri=True, timeout=query_timeout or self.timeout)

    def _execute_sync(self, query: str, query_timeout: int) -> tuple[list[dict[str, Any]], list[str]]:
        conn = self._open(query_timeout)
        try:
            cursor = conn.execute(query)
            columns = [col[0] for col in cursor.description or []]
            rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
            return rows, columns
        finally:
            conn.close()

    def _scan_sync(self) -> DatabaseSchema:
        conn = self._open()
        try:
            names = [
                row[0]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master "
                    "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
                )
            ]
            tables: list[TableInfo] = []
            relationships: list[RelationshipInfo] = []
            for name in names:
                quoted = self.quote_identifier(name)
                table = TableInfo(name=name)
                pk_positions: list[tuple[int, str]] = []
                # cid, name, type, notnull, dflt_value, pk
                for _, col_name, col_type, not_null, _, pk in conn.execute(
                    f"PRAGMA table_info({quoted})"
                ):
                    table.columns.append(
                        ColumnInfo(name=col_name, data_type=col_type or "", is_nullable=not not_null)
                    )
                    if pk:
                        pk_positions.append((pk, col_name))
                table.primary_keys = [col for _, col in sorted(pk_positions)]
                tables.append(table)

                # id, seq, table, from, to, on_update, on_delete, match
                for fk in conn.execute(f"PRAGMA foreign_key_list({quoted})"):
                    to_column = fk[4] or self._primary_key_of(conn, fk[2])
                    relationships.append(
                        RelationshipInfo(
                            from_table=name,
                            from_column=fk[3],
                            to_table=fk[2],
                            to_column=to_column,
                        )
                    )
        finally:
            conn.close()

        return DatabaseSchema(
            database_name=Path(self.database).stem,
            tables=tables,
            relationships=relationships,
        )

    def _primary_key_of(self, conn: sqlite3.Connection, table: str) -> str:
        for row in conn.execute(f"PRAGMA table_info({self.quote_identifier(table)})"):
            if row[5]:
                return row[1]
        return "rowid"
