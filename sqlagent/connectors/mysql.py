"""
MySQL Introspector

MySQL access using mysql-connector-python.

The underlying driver is synchronous, so query and schema operations are
executed in worker threads via asyncio.to_thread.
"""

import asyncio
import logging
import re
import time
from typing import Any

import mysql.connector
from mysql.connector import Error as MySQLError
from mysql.connector import errorcode

from sqlagent.connectors.base import (
    ConnectionError,
    QueryError,
    QueryResult,
    SchemaError,
    SchemaIntrospector,
)
from sqlagent.models.schema import ColumnInfo, DatabaseSchema, RelationshipInfo, TableInfo

logger = logging.getLogger(__name__)

_TRANSIENT_ERRNOS = {
    errorcode.ER_LOCK_DEADLOCK,
    errorcode.ER_LOCK_WAIT_TIMEOUT,
    errorcode.CR_SERVER_GONE_ERROR,
    errorcode.CR_SERVER_LOST,
    errorcode.ER_CON_COUNT_ERROR,
}


class MySQLIntrospector(SchemaIntrospector):
    """MySQL schema introspector and executor."""

    dialect = "mysql"

    ERROR_REWRITES = [
        (re.compile(r"Unknown column '([^']+)'", re.IGNORECASE), "Invalid column name '{}'."),
        (re.compile(r"Table '(?:[^'.]+\.)?([^']+)' doesn't exist", re.IGNORECASE), "Invalid object name '{}'."),
        (re.compile(r"Column '([^']+)' in [\w ]+ is ambiguous", re.IGNORECASE), "Ambiguous column name '{}'."),
        (re.compile(r"error in your SQL syntax.*?near '([^']*)'", re.IGNORECASE | re.DOTALL), "Incorrect syntax near '{}'."),
    ]

    async def execute(self, query: str, timeout: int | None = None) -> QueryResult:
        query_timeout = timeout or self.timeout
        start_time = time.perf_counter()
        try:
            rows, columns = await asyncio.to_thread(self._execute_sync, query, query_timeout)
        except MySQLError as exc:
            logger.error(f"MySQL query failed: {exc}\nQuery: {query[:200]}...")
            if exc.errno in (errorcode.CR_CONN_HOST_ERROR, errorcode.CR_CONNECTION_ERROR):
                raise ConnectionError(f"Connection to MySQL failed: {exc}") from exc
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
        except MySQLError as exc:
            logger.error(f"MySQL schema introspection failed: {exc}")
            if exc.errno in (errorcode.CR_CONN_HOST_ERROR, errorcode.CR_CONNECTION_ERROR):
                raise ConnectionError(f"Connection to MySQL failed: {exc}") from exc
            raise SchemaError(f"Failed to introspect schema: {exc}") from exc
        logger.info(
            f"Introspected MySQL schema '{self.database}': {len(schema.tables)} tables, "
            f"{len(schema.relationships)} relationships"
        )
        return schema

    def is_transient_error(self, exc: BaseException) -> bool:
        root = exc.__cause__ or exc
        return isinstance(root, MySQLError) and root.errno in _TRANSIENT_ERRNOS

    def quote_identifier(self, name: str) -> str:
        return ".".join(
            "`" + part.replace("`", "``") + "`" for part in self._split_identifier(name)
        )

    def _connection_kwargs(self, query_timeout: int | None = None) -> dict[str, Any]:
        kwargs = {
            "host": self.host,
            "port": self.port or 3306,
            "database": self.database or None,
            "user": self.user,
            "password": self.password,
            "autocommit": True,
            "connection_timeout": query_timeout or self.timeout,
        }
        kwargs.update(self.kwargs)
        return kwargs

    def _execute_sync(self, query: str, query_timeout: int) -> tuple[list[dict[str, Any]], list[str]]:
        conn = mysql.connector.connect(**self._connection_kwargs(query_timeout))
        try:
            cursor = conn.cursor(dictionary=True)
            try:
                cursor.execute(f"SET SESSION MAX_EXECUTION_TIME = {int(query_timeout * 1000)}")
                cursor.execute(query)
                if not cursor.with_rows:
                    return [], []
                rows = cursor.fetchall()
                columns = [col[0] for col in cursor.description]
                return rows, columns
            finally:
                cursor.close()
        finally:
            conn.close()

    def _scan_sync(self) -> DatabaseSchema:
        conn = mysql.connector.connect(**self._connection_kwargs())
        try:
            cursor = conn.cursor(dictionary=True)
            try:
                cursor.execute(
                    """
                    SELECT c.table_schema AS table_schema, c.table_name AS table_name,
                           c.column_name AS column_name, c.data_type AS data_type,
                           c.is_nullable AS is_nullable,
                           c.character_maximum_length AS max_length,
                           c.column_key AS column_key
                    FROM information_schema.columns c
                    JOIN information_schema.tables t
                      ON t.table_schema = c.table_schema AND t.table_name = c.table_name
                    WHERE c.table_schema = %s AND t.table_type = 'BASE TABLE'
                    ORDER BY c.table_name, c.ordinal_position
                    """,
                    (self.database,),
                )
                column_rows = cursor.fetchall()

                cursor.execute(
                    """
                    SELECT table_name AS from_table, column_name AS from_column,
                           referenced_table_name AS to_table,
                           referenced_column_name AS to_column
                    FROM information_schema.key_column_usage
                    WHERE table_schema = %s AND referenced_table_name IS NOT NULL
                    """,
                    (self.database,),
                )
                fk_rows = cursor.fetchall()
            finally:
                cursor.close()
        finally:
            conn.close()

        tables: dict[str, TableInfo] = {}
        for row in column_rows:
            name = str(row["table_name"])
            table = tables.setdefault(name, TableInfo(schema=str(row["table_schema"]), name=name))
            table.columns.append(
                ColumnInfo(
                    name=str(row["column_name"]),
                    data_type=str(row["data_type"]),
                    is_nullable=str(row["is_nullable"]).upper() == "YES",
                    max_length=row["max_length"],
                )
            )
            if str(row["column_key"]).upper() == "PRI":
                table.primary_keys.append(str(row["column_name"]))

        return DatabaseSchema(
            database_name=self.database,
            tables=list(tables.values()),
            relationships=[
                RelationshipInfo(
                    from_table=str(row["from_table"]),
                    from_column=str(row["from_column"]),
                    to_table=str(row["to_table"]),
                    to_column=str(row["to_column"]),
                )
                for row in fk_rows
            ],
        )
