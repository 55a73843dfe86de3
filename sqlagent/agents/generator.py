"""
SQL Generator

Produces one SELECT statement from the intent and the retrieved schema
context, and owns the two guards applied before execution:

- validate_sql(): keyword allow-list. Rejects any forbidden keyword as a
  whole word (case-insensitive), anything without a SELECT token, and input
  that splits into more than one statement. It is deliberately coarse: a
  column named DROP_COUNT is still fine, but one named DROP is not.
- ensure_limit(): adds the default row cap (TOP n on SQL Server, LIMIT n
  elsewhere) unless the query is already limited or aggregates.
"""

import logging
import re

import sqlparse

from sqlagent.agents.base import BaseAgent
from sqlagent.llm.client import LLMClient
from sqlagent.models.query import IntentAnalysis
from sqlagent.models.schema import RetrievedSchemaContext
from sqlagent.prompts.loader import PromptLoader
from sqlagent.utils.llm_output import clean_sql

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = (
    "DROP",
    "DELETE",
    "TRUNCATE",
    "ALTER",
    "CREATE",
    "INSERT",
    "UPDATE",
    "EXEC",
    "EXECUTE",
    "GRANT",
    "REVOKE",
    "SHUTDOWN",
)
# System/extended stored procedure prefixes (sp_executesql, xp_cmdshell, ...)
FORBIDDEN_PREFIXES = ("SP_", "XP_")

_FORBIDDEN_PATTERN = re.compile(
    r"\b(?:" + "|".join(FORBIDDEN_KEYWORDS) + r")\b"
    r"|\b(?:" + "|".join(FORBIDDEN_PREFIXES) + r")\w*"
)
_SELECT_TOKEN = re.compile(r"\bSELECT\b")
_ALREADY_LIMITED = re.compile(r"\bTOP\s*\(|\bTOP\s+[\d@]|\b(?:OFFSET|FETCH|LIMIT)\b")
_AGGREGATE = re.compile(r"\bGROUP\s+BY\b|\b(?:COUNT|SUM|AVG|MIN|MAX)\s*\(")
_TRAILING_LINE_COMMENT = re.compile(r"--[^\n]*\Z")
_LEADING_SELECT = re.compile(r"^\s*SELECT\s+(?:(DISTINCT|ALL)\s+)?", re.IGNORECASE)


def validate_sql(sql: str) -> bool:
    """Return True when ``sql`` passes the read-only keyword allow-list."""
    upper_sql = (sql or "").upper()

    match = _FORBIDDEN_PATTERN.search(upper_sql)
    if match:
        logger.warning(f"SQL contains forbidden keyword: {match.group(0)}")
        return False

    if not _SELECT_TOKEN.search(upper_sql):
        logger.warning("SQL does not contain SELECT")
        return False

    statements = [stmt for stmt in sqlparse.split(sql) if stmt.strip().strip(";").strip()]
    if len(statements) > 1:
        logger.warning(f"SQL contains {len(statements)} statements")
        return False

    return True


def ensure_limit(sql: str, dialect: str = "sqlserver", default_limit: int = 100) -> str:
    """
    Add the default row cap unless already limited or aggregated.

    ``SELECT Name FROM Customers`` becomes ``SELECT TOP 100 Name FROM Customers``
    on SQL Server and ``SELECT Name FROM Customers LIMIT 100`` elsewhere.
    """
    upper_sql = sql.upper()
    if _ALREADY_LIMITED.search(upper_sql) or _AGGREGATE.search(upper_sql):
        return sql

    if dialect == "sqlserver":
        match = _LEADING_SELECT.match(sql)
        if not match:
            return sql
        head = match.group(0).rstrip()
        capped = f"{head} TOP {default_limit} {sql[match.end():]}"
    else:
        body = _TRAILING_LINE_COMMENT.sub("", sql.rstrip()).rstrip().rstrip(";").rstrip()
        capped = f"{body} LIMIT {default_limit}"

    logger.debug(f"Added row cap of {default_limit}", extra={"dialect": dialect})
    return capped


class SqlGenerator(BaseAgent):
    """Generates SQL from intent + schema context."""

    def __init__(
        self,
        llm: LLMClient,
        prompts: PromptLoader | None = None,
        dialect: str = "sqlserver",
        default_row_limit: int = 100,
    ):
        super().__init__(name="SqlGenerator", llm=llm, prompts=prompts, dialect=dialect)
        self.default_row_limit = default_row_limit

    async def generate(
        self,
        question: str,
        intent: IntentAnalysis,
        context: RetrievedSchemaContext,
    ) -> str:
        """Generate a single SELECT statement (fences and trailing semicolons removed)."""
        self._start()
        system_prompt, user_prompt = self.prompts.render_pair(
            "sql_generation.md",
            dialect=self.dialect,
            dialect_label=self.dialect_label,
            question=question,
            intent=intent,
            tables=context.relevant_tables,
            relationships=context.relevant_relationships,
            row_limit=self.default_row_limit,
        )
        sql = clean_sql(await self._complete(system_prompt, user_prompt))
        logger.info(f"Generated SQL: {sql}", extra={"agent": self.name, "target": intent.target})
        self._finish()
        return sql

    def validate_sql(self, sql: str) -> bool:
        return validate_sql(sql)

    def ensure_limit(self, sql: str) -> str:
        return ensure_limit(sql, dialect=self.dialect, default_limit=self.default_row_limit)
