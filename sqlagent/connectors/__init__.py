"""
Database Connectors Module

Per-engine schema introspection and query execution.

Available Introspectors:
    - SchemaIntrospector: Abstract base class
    - SqlServerIntrospector: SQL Server (aioodbc), loaded on demand by the factory
    - PostgresIntrospector: PostgreSQL (asyncpg)
    - MySQLIntrospector: MySQL (mysql-connector-python)
    - SQLiteIntrospector: SQLite files (sqlite3)

Usage:
    from sqlagent.connectors import create_introspector

    introspector = create_introspector(database_url="postgresql://app@localhost/shop")
    schema = await introspector.scan()
    result = await introspector.execute("SELECT COUNT(*) AS n FROM customers")
"""

from sqlagent.connectors.base import (
    ConnectionError,
    ConnectorError,
    QueryError,
    QueryResult,
    SchemaError,
    SchemaIntrospector,
)
from sqlagent.connectors.factory import (
    SUPPORTED_DATABASE_TYPES,
    create_introspector,
    database_namespace,
    effective_database_type,
    infer_database_type,
    resolve_database_type,
)
from sqlagent.connectors.mysql import MySQLIntrospector
from sqlagent.connectors.postgres import PostgresIntrospector
from sqlagent.connectors.sqlite import SQLiteIntrospector

__all__ = [
    "SchemaIntrospector",
    "PostgresIntrospector",
    "MySQLIntrospector",
    "SQLiteIntrospector",
    "SUPPORTED_DATABASE_TYPES",
    "create_introspector",
    "database_namespace",
    "effective_database_type",
    "infer_database_type",
    "resolve_database_type",
    "QueryResult",
    "ConnectorError",
    "ConnectionError",
    "QueryError",
    "SchemaError",
]
