"""Base class for per-dialect catalog introspection."""

from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection

from schema_trainer.schemas.schema_data import ColumnMetadata, ForeignKeyMetadata, IndexMetadata


class IntrospectionAdapter:
    """Reads schema metadata from one target database using catalog queries.

    Subclasses implement every query for their dialect. Methods raise the
    driver's error on failure; the training engine decides which failures
    degrade a table and which abort the run.

    Attributes:
        connection: Open SQLAlchemy connection to the target database
        excluded_schemas: System schemas never offered for training
    """

    dialect: str = ""
    excluded_schemas: Sequence[str] = ()
    row_counts_are_exact: bool = False

    def __init__(self, connection: Connection):
        self.connection = connection

    def _rows(self, sql: str, **params: Any) -> List[Dict[str, Any]]:
        result = self.connection.execute(text(sql), params)
        return [dict(row) for row in result.mappings().all()]

    def _scalar(self, sql: str, **params: Any) -> Any:
        return self.connection.execute(text(sql), params).scalar()

    def _filter_schemas(self, names: List[str]) -> List[str]:
        excluded = {name.lower() for name in self.excluded_schemas}
        return [name for name in names if name.lower() not in excluded]

    def list_schemas(self) -> List[str]:
        raise NotImplementedError

    def list_tables(self, schema: str) -> List[str]:
        raise NotImplementedError

    def get_columns(self, schema: str, table: str) -> List[ColumnMetadata]:
        raise NotImplementedError

    def get_indexes(self, schema: str, table: str) -> List[IndexMetadata]:
        raise NotImplementedError

    def get_foreign_keys(self, schema: str, table: str) -> List[ForeignKeyMetadata]:
        raise NotImplementedError

    def estimate_row_count(self, schema: str, table: str) -> Optional[int]:
        """Row count for ``table``; approximate unless ``row_counts_are_exact``."""
        raise NotImplementedError

    def get_version(self) -> Optional[str]:
        raise NotImplementedError


def as_bool(value: Any) -> bool:
    """Normalize driver booleans (MySQL returns 0/1 for comparisons)."""
    if isinstance(value, str):
        return value.strip().upper() in ("1", "YES", "TRUE", "T")
    return bool(value)


def as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)
