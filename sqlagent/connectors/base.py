"""
Base Schema Introspector

Abstract base class for the per-engine database capability used by the
pipeline. Every engine implements:

- scan(): Read tables, columns, primary keys and foreign keys
- execute(): Run one statement on a fresh connection that is always closed
- test_connection(): Cheap connectivity probe
- is_transient_error(): Whether a failure is worth retrying as-is
- quote_identifier(): Dialect-safe identifier quoting

Engine error messages are rewritten into one canonical phrasing
(``Invalid column name 'x'``, ``Invalid object name 'x'``, ...) before they
leave the connector, so a single error analyzer serves every dialect. The
original driver text is kept in brackets after the canonical part.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from sqlagent.models.schema import DatabaseSchema

logger = logging.getLogger(__name__)


# ============================================================================
# Data Models
# ============================================================================


class QueryResult(BaseModel):
    """Result from query execution."""

    rows: list[dict[str, Any]] = Field(..., description="Query result rows")
    row_count: int = Field(..., description="Number of rows returned")
    columns: list[str] = Field(..., description="Column names")
    execution_time_ms: float = Field(..., description="Query execution time in ms")


class ConnectorError(Exception):
    """Base exception for connector errors."""

    pass


class ConnectionError(ConnectorError):
    """Error establishing a database connection."""

    pass


class QueryError(ConnectorError):
    """Error executing a database query."""

    pass


class SchemaError(ConnectorError):
    """Error reading catalog metadata."""

    pass


# ============================================================================
# Introspector
# ============================================================================


class SchemaIntrospector(ABC):
    """
    Abstract base class for engine-specific database access.

    Attributes:
        dialect: Engine key (sqlserver, postgresql, mysql, sqlite)
        database: Database/catalog name (file path for SQLite)
        timeout: Default statement timeout in seconds
    """

    dialect: str = ""

    # (pattern, canonical template) pairs; templates receive the first group
    ERROR_REWRITES: list[tuple[re.Pattern, str]] = []

    def __init__(
        self,
        host: str = "",
        port: int | None = None,
        database: str = "",
        user: str = "",
        password: str = "",
        timeout: int = 30,
        **kwargs,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.timeout = timeout
        self.kwargs = kwargs

        logger.info(f"Initialized {self.__class__.__name__} for {self._describe()}")

    @abstractmethod
    async def scan(self) -> DatabaseSchema:
        """
        Read the full schema.

        Raises:
            ConnectionError: Database unreachable
            SchemaError: Catalog queries failed
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    async def execute(self, query: str, timeout: int | None = None) -> QueryResult:
        """
        Execute one statement on its own connection.

        Raises:
            QueryError: Statement failed (message canonicalized)
            ConnectionError: Database unreachable
        """
        pass  # pragma: no cover - abstract method

    @abstractmethod
    def is_transient_error(self, exc: BaseException) -> bool:
        """Return True for failures that may succeed if the same statement is re-run."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Quote a (possibly dotted) identifier for this dialect."""
        pass  # pragma: no cover - abstract method

    async def test_connection(self) -> bool:
        """Run a trivial query; never raises."""
        try:
            await self.execute("SELECT 1", timeout=min(self.timeout, 10))
            return True
        except Exception as exc:
            logger.warning(
                f"Connection test failed for {self._describe()}: {exc}",
                extra={"dialect": self.dialect},
            )
            return False

    def canonical_error_message(self, exc: BaseException) -> str:
        """Rewrite a driver error into the canonical phrasing, keeping the raw text."""
        raw = str(exc)
        for pattern, template in self.ERROR_REWRITES:
            match = pattern.search(raw)
            if match:
                return f"{template.format(match.group(1))} [{raw}]"
        return raw

    def _split_identifier(self, name: str) -> list[str]:
        return [part for part in name.split(".") if part]

    def _describe(self) -> str:
        if self.host:
            return f"{self.user}@{self.host}:{self.port}/{self.database}"
        return self.database or "<unnamed>"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self._describe()}>"
