"""
PostgreSQL Introspector

Async PostgreSQL access using asyncpg. Every operation opens its own
connection and closes it before returning; nothing is pooled across
questions.

Usage:
    introspector = PostgresIntrospector(
        host="localhost", port=5432, database="shop", user="postgres", password="secret"
    )
    schema = await introspector.scan()
    result = await introspector.execute("SELECT name FROM customers LIMIT 5")
"""

import asyncio
import logging
import re
import time

import asyncpg

from sqlagent.connectors.base import (
    ConnectionError,
    QueryError,
    QueryResult,
    SchemaError,
    SchemaIntrospector,
)
from sqlagent.models.schema import ColumnInfo, DatabaseSchema, RelationshipInfo, TableInfo

logger = logging.getLogger(__name__)

_TRANSIENT_SQLSTATES = {"40001", "40P01", "53300", "57P01", "57P03"}
_SYSTEM_SCHEMAS = ("pg_catalog", "information_schema")


class PostgresIntrospector(SchemaIntrospector):
    """PostgreSQL schema introspector and executor using asyncpg."""

    dialect = "postgresql"

    ERROR_REWRITES = [
        (re.compile(r'column "?([\w.]+)"? does not exist', re.IGNORECASE), "Invalid column name '{}'."),
        (re.compile(r'relation "?([\w.]+)"? does not exist', re.IGNORECASE), "Invalid object name '{}'."),
        (re.compile(r'syntax error at or near "([^"]+)"', re.IGNORECASE), "Incorrect syntax near '{}'."),
        (re.compile(r'column reference "([^"]+)" is ambiguous', re.IGNORECASE), "Ambiguous column name '{}'."),
    ]

    async def execute(self, query: str, timeout: int | None = None) -> QueryResult:
        query_timeout = timeout or self.timeout
        conn = await self._connect()
        start_time = time.perf_counter()
        try:
            records = await conn.fetch(query, timeout=query_timeout)
            rows = [dict(record) for record in records]
            columns = list(records[0].keys()) if records else []
            return QueryResult(
                rows=rows,
                row_count=len(rows),
                columns=columns,
                execution_time_ms=(time.perf_counter() - start_time) * 1000,
            )
        except (asyncio.TimeoutError, asyncpg.QueryCanceledError) as e:
            logger.error(f"Query timed out after {query_timeout}s: {query[:100]}...")
            raise QueryError(f"Query timeout: execution exceeded {query_timeout}s") from e
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}\nQuery: {query[:200]}...")
            raise QueryError(self.canonical_error_message(e)) from e
        finally:
            await conn.close()

    async def scan(self) -> DatabaseSchema:
        conn = await self._connect()
        try:
            column_rows = await conn.fetch(
                """
                SELECT c.table_schema, c.table_name, c.column_name, c.data_type,
                       c.is_nullable, c.character_maximum_length
                FROM information_schema.columns c
                JOIN information_schema.tables t
                  ON t.table_schema = c.table_schema AND t.table_name = c.table_name
                WHERE t.table_type = 'BASE TABLE'
                  AND c.table_schema <> ALL($1::text[])
                ORDER BY c.table_schema, c.table_name, c.ordinal_position
                """,
                list(_SYSTEM_SCHEMAS),
            )
            pk_rows = await conn.fetch(
                """
                SELECT tc.table_schema, tc.table_name, kcu.column_name
                FROM information_schema.table_constraints tc
                JOIN information_schema.key_column_usage kcu
                  ON tc.constraint_name = kcu.constraint_name
                 AND tc.table_schema = kcu.table_schema
                WHERE tc.constraint_type = 'PRIMARY KEY'
                ORDER BY kcu.ordinal_position
                """
            )
            fk_rows = await conn.fetch(
                """
                SELECT kcu.table_name AS from_table, kcu.column_name AS from_column,
                       ccu.table_name AS to_table, ccu.column_name AS to_column
                FROM information_schema.table_constraints tc
                JOIN information_schema.key_column_usage kcu
                  ON tc.constraint_name = kcu.constraint_name
                 AND tc.table_schema = kcu.table_schema
                JOIN information_schema.constraint_column_usage ccu
                  ON ccu.constraint_name = tc.constraint_name
                 AND ccu.table_schema = tc.table_schema
                WHERE tc.constraint_type = 'FOREIGN KEY'
                """
            )
        except asyncpg.PostgresError as e:
            logger.error(f"Schema introspection failed: {e}")
            raise SchemaError(f"Failed to introspect schema: {e}") from e
        finally:
            await conn.close()

        tables: dict[tuple[str, str], TableInfo] = {}
        for row in column_rows:
            key = (row["table_schema"], row["table_name"])
            table = tables.setdefault(key, TableInfo(schema=key[0], name=key[1]))
            table.columns.append(
                ColumnInfo(
                    name=row["column_name"],
                    data_type=row["data_type"],
                    is_nullable=row["is_nullable"] == "YES",
                    max_length=row["character_maximum_length"],
                )
            )
        for row in pk_rows:
            table = tables.get((row["table_schema"], row["table_name"]))
            if table is not None:
                table.primary_keys.append(row["column_name"])

        schema = DatabaseSchema(
            database_name=self.database,
            tables=list(tables.values()),
            relationships=[
                RelationshipInfo(
                    from_table=row["from_table"],
                    from_column=row["from_column"],
                    to_table=row["to_table"],
                    to_column=row["to_column"],
                )
                for row in fk_rows
            ],
        )
        logger.info(
            f"Introspected PostgreSQL schema: {len(schema.tables)} tables, "
            f"{len(schema.relationships)} relationships"
        )
        return schema

    def is_transient_error(self, exc: BaseException) -> bool:
        root = exc.__cause__ or exc
        if isinstance(root, (ConnectionResetError, asyncpg.ConnectionDoesNotExistError)):
            return True
        if isinstance(root, asyncio.TimeoutError):
            return True
        sqlstate = getattr(root, "sqlstate", None) or ""
        return sqlstate.startswith("08") or sqlstate in _TRANSIENT_SQLSTATES

    def quote_identifier(self, name: str) -> str:
        return ".".join(
            '"' + part.replace('"', '""') + '"' for part in self._split_identifier(name)
        )

    async def _connect(self) -> asyncpg.Connection:
        try:
            return await asyncpg.connect(
                host=self.host,
                port=self.port or 5432,
                database=self.database,
                user=self.user,
                password=self.password,
                timeout=self.timeout,
                command_timeout=self.timeout,
                **self.kwargs,
            )
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
            logger.error(f"PostgreSQL connection failed: {e}")
            raise ConnectionError(f"Connection to PostgreSQL failed: {e}") from e
