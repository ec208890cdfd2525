"""Normalized schema metadata document and training options."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ColumnMetadata(BaseModel):
    name: str
    type: Optional[str] = None
    nullable: bool = True
    default_value: Optional[str] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    extra: str = ""


class IndexMetadata(BaseModel):
    """One (index, column) pair; multi-column indexes produce several entries."""

    name: str
    column_name: str = ""
    is_unique: bool = False
    index_type: str = ""


class ForeignKeyMetadata(BaseModel):
    column_name: str
    referenced_table: str
    referenced_column: Optional[str] = None
    constraint_name: Optional[str] = None
    update_rule: Optional[str] = None
    delete_rule: Optional[str] = None


class TableMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    schema_name: str = Field(alias="schema")
    columns: List[ColumnMetadata] = Field(default_factory=list)
    indexes: List[IndexMetadata] = Field(default_factory=list)
    foreign_keys: List[ForeignKeyMetadata] = Field(default_factory=list)
    row_count: Optional[int] = None  # Approximate on server dialects


class SchemaMetadata(BaseModel):
    name: str
    tables: List[TableMetadata] = Field(default_factory=list)


class SchemaData(BaseModel):
    """The trained document persisted in the schema cache."""

    schemas: List[SchemaMetadata] = Field(default_factory=list)
    total_tables: int = 0
    total_columns: int = 0
    database_type: str
    version: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def find_table(self, schema: str, table: str) -> Optional[TableMetadata]:
        for schema_meta in self.schemas:
            if schema_meta.name != schema:
                continue
            for table_meta in schema_meta.tables:
                if table_meta.name == table:
                    return table_meta
        return None


class TableRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_name: str = Field(alias="schema")
    table: str


class TrainingOptions(BaseModel):
    """Selection and metadata switches for a training run.

    Accepts camelCase (``includeForeignKeys``) as sent by the frontend, or
    snake_case field names.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schemas: Optional[List[str]] = None
    tables: Optional[List[TableRef]] = None
    include_columns: bool = True
    include_indexes: bool = True
    include_foreign_keys: bool = True
    include_row_counts: bool = True

    def selected_tables(self, schema: str) -> List[str]:
        """Tables selected in ``schema``; empty means the whole schema."""
        if not self.tables:
            return []
        return [ref.table for ref in self.tables if ref.schema_name == schema]


class SchemaCacheRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    connection_id: UUID
    training_status: str
    training_started_at: Optional[datetime] = None
    last_trained_at: Optional[datetime] = None
    error_message: Optional[str] = None
    schema_data: Optional[Dict[str, Any]] = None


class TrainRequest(BaseModel):
    """Body of a training trigger."""

    user_id: Optional[str] = None
    force: bool = False
    wait: bool = False  # Train inline and return the cache record
    options: Optional[TrainingOptions] = None


class TrainResponse(BaseModel):
    status: str  # 'pending' when queued, 'completed' when run inline
    message: str
    job_id: Optional[UUID] = None
    cache: Optional[SchemaCacheRecord] = None


class StaleTrainingResponse(BaseModel):
    connection_ids: List[UUID]
    job_ids: List[UUID]
