"""
Schema Models

Pydantic models describing a scanned database schema and the
relevance-filtered view of it that is handed to the LLM for one question.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ColumnInfo(BaseModel):
    """Column metadata."""

    name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="Engine data type")
    is_nullable: bool = Field(default=True, description="Whether NULLs are allowed")
    max_length: int | None = Field(default=None, description="Character length if applicable")
    is_primary_key: bool = Field(default=False, description="Part of the primary key")
    is_foreign_key: bool = Field(default=False, description="Source of a foreign key")


class TableInfo(BaseModel):
    """Table metadata with its columns and primary-key names."""

    schema_name: str = Field(default="", alias="schema", description="Owning schema/namespace")
    name: str = Field(..., description="Table name")
    columns: list[ColumnInfo] = Field(default_factory=list)
    primary_keys: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @property
    def full_name(self) -> str:
        """Qualified name (schema.table) when a schema is known."""
        return f"{self.schema_name}.{self.name}" if self.schema_name else self.name

    def get_column(self, name: str) -> ColumnInfo | None:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None


class RelationshipInfo(BaseModel):
    """Foreign key edge: from_table.from_column -> to_table.to_column."""

    from_table: str
    from_column: str
    to_table: str
    to_column: str

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> tuple[str, str, str, str]:
        """Identity used for de-duplication."""
        return (self.from_table, self.from_column, self.to_table, self.to_column)


def last_segment(name: str) -> str:
    """Return the part after the last dot, lowercased ("dbo.Customers" -> "customers")."""
    return name.rsplit(".", 1)[-1].strip("[]\"`").lower()


class DatabaseSchema(BaseModel):
    """
    Snapshot of table, column and relationship metadata for one database.

    Column primary/foreign-key flags are derived from ``primary_keys`` and
    ``relationships`` on construction so the three stay consistent.
    """

    database_name: str = Field(default="", description="Database/catalog name")
    tables: list[TableInfo] = Field(default_factory=list)
    relationships: list[RelationshipInfo] = Field(default_factory=list)
    scanned_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def sync_key_flags(self) -> "DatabaseSchema":
        """Derive column PK/FK flags from the key lists."""
        fk_sources = {
            (last_segment(rel.from_table), rel.from_column.lower())
            for rel in self.relationships
        }
        for table in self.tables:
            pk_names = {pk.lower() for pk in table.primary_keys}
            table_key = last_segment(table.name)
            for column in table.columns:
                column.is_primary_key = column.name.lower() in pk_names
                column.is_foreign_key = (table_key, column.name.lower()) in fk_sources
        return self

    @property
    def is_empty(self) -> bool:
        return not self.tables

    @property
    def table_names(self) -> list[str]:
        return [table.name for table in self.tables]

    def find_table(self, name: str) -> TableInfo | None:
        """Find a table by bare or schema-qualified name (case-insensitive)."""
        wanted = last_segment(name)
        for table in self.tables:
            if last_segment(table.name) == wanted:
                return table
        return None


class SchemaMatch(BaseModel):
    """One ranked similarity-search hit."""

    type: str = Field(..., description="Record kind: table, column or relationship")
    table_name: str
    column_name: str | None = None
    score: float = Field(..., description="Similarity score (1.0 = identical)")
    content: str = Field(default="", description="Matched document text")

    model_config = ConfigDict(frozen=True)


class RetrievedSchemaContext(BaseModel):
    """Relevance-filtered schema view for one question. Immutable once built."""

    relevant_tables: list[TableInfo] = Field(default_factory=list)
    relevant_relationships: list[RelationshipInfo] = Field(default_factory=list)
    table_columns: dict[str, list[ColumnInfo]] = Field(default_factory=dict)
    matches: list[SchemaMatch] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def is_empty(self) -> bool:
        return not self.relevant_tables

    @property
    def table_names(self) -> list[str]:
        return [table.name for table in self.relevant_tables]

    @classmethod
    def from_tables(
        cls,
        tables: list[TableInfo],
        relationships: list[RelationshipInfo],
        matches: list[SchemaMatch] | None = None,
    ) -> "RetrievedSchemaContext":
        """Build a context, deriving the table -> columns map."""
        return cls(
            relevant_tables=tables,
            relevant_relationships=relationships,
            table_columns={table.name: list(table.columns) for table in tables},
            matches=matches or [],
        )
