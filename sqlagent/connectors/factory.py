"""Introspector factory for supported database engines."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote, urlparse

from sqlagent.connectors.base import SchemaIntrospector
from sqlagent.connectors.mysql import MySQLIntrospector
from sqlagent.connectors.postgres import PostgresIntrospector
from sqlagent.connectors.sqlite import SQLiteIntrospector
from sqlagent.models.errors import UnsupportedDatabaseError

SUPPORTED_DATABASE_TYPES = ("sqlserver", "postgresql", "mysql", "sqlite")

_SQLSERVER_SCHEMES = {"mssql", "sqlserver"}
_POSTGRES_SCHEMES = {"postgres", "postgresql"}
_MYSQL_SCHEMES = {"mysql"}
_SQLITE_SCHEMES = {"sqlite"}
_SQLITE_SUFFIXES = {".db", ".sqlite", ".sqlite3"}

_TYPE_ALIASES = {
    "sqlserver": "sqlserver",
    "mssql": "sqlserver",
    "postgres": "postgresql",
    "postgresql": "postgresql",
    "mysql": "mysql",
    "sqlite": "sqlite",
}


def infer_database_type(database_url: str) -> str:
    """Infer logical database type from connection URL scheme."""
    if _is_odbc_string(database_url):
        return "sqlserver"
    parsed = urlparse(database_url)
    scheme = parsed.scheme.split("+")[0].lower()
    if scheme in _SQLSERVER_SCHEMES:
        return "sqlserver"
    if scheme in _POSTGRES_SCHEMES:
        return "postgresql"
    if scheme in _MYSQL_SCHEMES:
        return "mysql"
    if scheme in _SQLITE_SCHEMES:
        return "sqlite"
    if not scheme and Path(database_url).suffix.lower() in _SQLITE_SUFFIXES:
        return "sqlite"
    raise UnsupportedDatabaseError(
        f"Unsupported database URL scheme: {parsed.scheme or '<none>'}",
        context={"supported": list(SUPPORTED_DATABASE_TYPES)},
    )


def resolve_database_type(database_type: str | None, database_url: str | None = None) -> str:
    """Resolve target database type from explicit type or URL."""
    if database_type:
        value = database_type.strip().lower()
        if value in _TYPE_ALIASES:
            return _TYPE_ALIASES[value]
        raise UnsupportedDatabaseError(
            f"Unsupported database type: {database_type}",
            context={"supported": list(SUPPORTED_DATABASE_TYPES)},
        )
    if not database_url:
        raise UnsupportedDatabaseError("Database type could not be determined: no type or URL given")
    return infer_database_type(database_url)


def create_introspector(
    *,
    database_url: str,
    database_type: str | None = None,
    timeout: int = 30,
    **kwargs,
) -> SchemaIntrospector:
    """
    Create a typed introspector from a connection URL and optional engine type.

    The engine is resolved before anything connects, so an unknown engine
    fails here rather than at the first query.

    Raises:
        UnsupportedDatabaseError: Engine is not one of SUPPORTED_DATABASE_TYPES
        ValueError: URL is missing required parts
    """
    target_type = resolve_database_type(database_type, database_url)

    if target_type == "sqlserver":
        # pyodbc needs the unixODBC runtime, so only load it for SQL Server targets
        from sqlagent.connectors.sqlserver import SqlServerIntrospector

        if _is_odbc_string(database_url):
            return SqlServerIntrospector(
                dsn=database_url,
                database=_odbc_database(database_url) or "",
                timeout=timeout,
                **kwargs,
            )

    parsed = urlparse(database_url)

    if target_type == "sqlite":
        path = _sqlite_path(database_url)
        if not path:
            raise ValueError("Invalid SQLite URL: file path is required.")
        return SQLiteIntrospector(database=str(Path(path)), timeout=timeout, **kwargs)

    if not parsed.hostname:
        raise ValueError("Invalid database URL: host is required.")

    db_name = unquote(parsed.path.lstrip("/"))
    user = unquote(parsed.username) if parsed.username else ""
    password = unquote(parsed.password) if parsed.password else ""

    if target_type == "sqlserver":
        return SqlServerIntrospector(
            host=parsed.hostname,
            port=parsed.port,
            database=db_name or "master",
            user=user,
            password=password,
            timeout=timeout,
            **kwargs,
        )

    if target_type == "postgresql":
        return PostgresIntrospector(
            host=parsed.hostname,
            port=parsed.port or 5432,
            database=db_name or "postgres",
            user=user or "postgres",
            password=password,
            timeout=timeout,
            **kwargs,
        )

    if target_type == "mysql":
        return MySQLIntrospector(
            host=parsed.hostname,
            port=parsed.port or 3306,
            database=db_name,
            user=user or "root",
            password=password,
            timeout=timeout,
            **kwargs,
        )

    raise UnsupportedDatabaseError(f"Unsupported database type: {target_type}")


def _sqlite_path(database_url: str) -> str:
    # sqlite:///relative.db and sqlite:////absolute/path.db
    if database_url.startswith("sqlite:///"):
        return unquote(database_url[len("sqlite:///") :])
    parsed = urlparse(database_url)
    if parsed.scheme:
        return unquote(parsed.netloc + parsed.path)
    return database_url


def _is_odbc_string(value: str) -> bool:
    return "://" not in value and "=" in value and ";" in value


def _odbc_database(dsn: str) -> str | None:
    for part in dsn.split(";"):
        name, _, value = part.partition("=")
        if name.strip().lower() in ("database", "initial catalog"):
            return value.strip()
    return None


def database_namespace(database_url: str, database_type: str | None = None) -> str | None:
    """
    Logical name of the target database, used to name its schema index.

    The catalog name when the descriptor has one, the file stem for SQLite,
    otherwise the server host. None when nothing can be derived.
    """
    if not database_url or not database_url.strip():
        return None
    target_type = resolve_database_type(database_type, database_url)

    if _is_odbc_string(database_url):
        values = _odbc_values(database_url)
        if target_type == "sqlite":
            source = values.get("data source") or values.get("filename")
            return Path(source).stem if source else None
        return values.get("database") or values.get("initial catalog") or values.get("server")

    if target_type == "sqlite":
        return Path(_sqlite_path(database_url)).stem or None

    parsed = urlparse(database_url)
    catalog = unquote(parsed.path.lstrip("/")) if parsed.path else ""
    return catalog or parsed.hostname


def _odbc_values(dsn: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for part in dsn.split(";"):
        name, sep, value = part.partition("=")
        if sep and value.strip():
            values[name.strip().lower()] = value.strip()
    return values


def effective_database_type(database_url: str, configured_type: str | None) -> str | None:
    """The configured engine type, unless the URL scheme already names one."""
    if "://" in database_url:
        return None
    return configured_type
