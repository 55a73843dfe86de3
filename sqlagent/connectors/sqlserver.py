"""
SQL Server Introspector

Async SQL Server access through aioodbc (pyodbc under the hood). Accepts
either a raw ODBC connection string or discrete host/database/credentials.

SQL Server is the reference dialect for error text: its messages
("Invalid column name 'X'.") are already in canonical form, so no
rewriting is needed.
"""

import logging
import time
from typing import Any

import aioodbc
import pyodbc
from aioodbc.connection import Connection

from sqlagent.connectors.base import (
    ConnectionError,
    QueryError,
    QueryResult,
    SchemaError,
    SchemaIntrospector,
)
from sqlagent.models.schema import ColumnInfo, DatabaseSchema, RelationshipInfo, TableInfo

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"

# Deadlock victim, lock timeout, and connection-class SQLSTATEs
_TRANSIENT_SQLSTATES = {"40001", "HYT00", "HYT01", "08S01", "08001", "08004"}

_COLUMNS_QUERY = """
SELECT c.TABLE_SCHEMA, c.TABLE_NAME, c.COLUMN_NAME, c.DATA_TYPE,
       c.IS_NULLABLE, c.CHARACTER_MAXIMUM_LENGTH
FROM INFORMATION_SCHEMA.COLUMNS c
JOIN INFORMATION_SCHEMA.TABLES t
  ON t.TABLE_SCHEMA = c.TABLE_SCHEMA AND t.TABLE_NAME = c.TABLE_NAME
WHERE t.TABLE_TYPE = 'BASE TABLE'
ORDER BY c.TABLE_SCHEMA, c.TABLE_NAME, c.ORDINAL_POSITION
"""

_PRIMARY_KEYS_QUERY = """
SELECT ku.TABLE_SCHEMA, ku.TABLE_NAME, ku.COLUMN_NAME
FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE ku
  ON tc.CONSTRAINT_NAME = ku.CONSTRAINT_NAME AND tc.TABLE_SCHEMA = ku.TABLE_SCHEMA
WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
ORDER BY ku.ORDINAL_POSITION
"""

_FOREIGN_KEYS_QUERY = """
SELECT fk_col.TABLE_NAME AS FromTable, fk_col.COLUMN_NAME AS FromColumn,
       pk_col.TABLE_NAME AS ToTable, pk_col.COLUMN_NAME AS ToColumn
FROM INFORMATION_SCHEMA.REFERENTIAL_CONSTRAINTS rc
JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE fk_col
  ON rc.CONSTRAINT_NAME = fk_col.CONSTRAINT_NAME
JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE pk_col
  ON rc.UNIQUE_CONSTRAINT_NAME = pk_col.CONSTRAINT_NAME
 AND fk_col.ORDINAL_POSITION = pk_col.ORDINAL_POSITION
"""


class SqlServerIntrospector(SchemaIntrospector):
    """SQL Server schema introspector and executor using aioodbc."""

    dialect = "sqlserver"

    def __init__(self, dsn: str | None = None, driver: str = DEFAULT_DRIVER, **kwargs):
        self.driver = driver
        self._dsn = dsn
        super().__init__(**kwargs)

    @property
    def dsn(self) -> str:
        """ODBC connection string."""
        if self._dsn:
            return self._dsn
        server = f"{self.host},{self.port}" if self.port else self.host
        parts = [
            f"DRIVER={{{self.driver}}}",
            f"SERVER={server}",
            f"DATABASE={self.database}",
        ]
        if self.user:
            parts.append(f"UID={self.user}")
            parts.append(f"PWD={self.password}")
        else:
            parts.append("Trusted_Connection=yes")
        parts.append("TrustServerCertificate=yes")
        return ";".join(parts) + ";"

    async def execute(self, query: str, timeout: int | None = None) -> QueryResult:
        query_timeout = timeout or self.timeout
        start_time = time.perf_counter()
        conn = await self._connect()
        try:
            async with conn.cursor() as cursor:
                await cursor.execute(query)
                columns = [column[0] for column in cursor.description] if cursor.description else []
                raw_rows = await cursor.fetchall() if cursor.description else []
        except pyodbc.Error as e:
            logger.error(f"SQL Server query failed: {e}\nQuery: {query[:200]}...")
            if self._sqlstate(e) == "HYT00":
                raise QueryError(f"Query timeout: execution exceeded {query_timeout}s ({e})") from e
            raise QueryError(str(e)) from e
        finally:
            await conn.close()

        rows = [self._row_to_dict(columns, row) for row in raw_rows]
        return QueryResult(
            rows=rows,
            row_count=len(rows),
            columns=columns,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    async def scan(self) -> DatabaseSchema:
        conn = await self._connect()
        try:
            async with conn.cursor() as cursor:
                await cursor.execute(_COLUMNS_QUERY)
                column_rows = await cursor.fetchall()
                await cursor.execute(_PRIMARY_KEYS_QUERY)
                pk_rows = await cursor.fetchall()
                await cursor.execute(_FOREIGN_KEYS_QUERY)
                fk_rows = await cursor.fetchall()
        except pyodbc.Error as e:
            logger.error(f"SQL Server schema introspection failed: {e}")
            raise SchemaError(f"Failed to introspect schema: {e}") from e
        finally:
            await conn.close()

        tables: dict[tuple[str, str], TableInfo] = {}
        for schema_name, table_name, column_name, data_type, nullable, max_length in column_rows:
            table = tables.setdefault(
                (schema_name, table_name), TableInfo(schema=schema_name, name=table_name)
            )
            table.columns.append(
                ColumnInfo(
                    name=column_name,
                    data_type=data_type,
                    is_nullable=nullable == "YES",
                    max_length=max_length,
                )
            )
        for schema_name, table_name, column_name in pk_rows:
            table = tables.get((schema_name, table_name))
            if table is not None:
                table.primary_keys.append(column_name)

        schema = DatabaseSchema(
            database_name=self.database,
            tables=list(tables.values()),
            relationships=[
                RelationshipInfo(
                    from_table=from_table,
                    from_column=from_column,
                    to_table=to_table,
                    to_column=to_column,
                )
                for from_table, from_column, to_table, to_column in fk_rows
            ],
        )
        logger.info(
            f"Introspected SQL Server schema: {len(schema.tables)} tables, "
            f"{len(schema.relationships)} relationships"
        )
        return schema

    def is_transient_error(self, exc: BaseException) -> bool:
        root = exc.__cause__ or exc
        if not isinstance(root, pyodbc.Error):
            return False
        return self._sqlstate(root) in _TRANSIENT_SQLSTATES or "deadlock" in str(root).lower()

    def quote_identifier(self, name: str) -> str:
        return ".".join(
            "[" + part.replace("]", "]]") + "]" for part in self._split_identifier(name)
        )

    async def _connect(self) -> Connection:
        try:
            return await aioodbc.connect(dsn=self.dsn, timeout=self.timeout, autocommit=True)
        except pyodbc.Error as e:
            logger.error(f"SQL Server connection failed: {e}")
            raise ConnectionError(f"Connection to SQL Server failed: {e}") from e

    @staticmethod
    def _sqlstate(exc: pyodbc.Error) -> str:
        return str(exc.args[0]) if exc.args else ""

    @staticmethod
    def _row_to_dict(columns: list[str], row: Any) -> dict[str, Any]:
        return {column: row[index] for index, column in enumerate(columns)}
