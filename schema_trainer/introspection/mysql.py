"""MySQL-family introspection via INFORMATION_SCHEMA."""

from typing import List, Optional

from schema_trainer.introspection.base import IntrospectionAdapter, as_bool, as_text
from schema_trainer.schemas.schema_data import ColumnMetadata, ForeignKeyMetadata, IndexMetadata

COLUMNS_SQL = """
SELECT
  c.COLUMN_NAME AS name,
  c.COLUMN_TYPE AS type,
  c.IS_NULLABLE = 'YES' AS nullable,
  c.COLUMN_DEFAULT AS default_value,
  c.COLUMN_KEY = 'PRI' AS is_primary_key,
  EXISTS (
    SELECT 1
    FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE k
    WHERE k.TABLE_SCHEMA = c.TABLE_SCHEMA
      AND k.TABLE_NAME = c.TABLE_NAME
      AND k.COLUMN_NAME = c.COLUMN_NAME
      AND k.REFERENCED_TABLE_NAME IS NOT NULL
  ) AS is_foreign_key,
  c.EXTRA AS extra
FROM INFORMATION_SCHEMA.COLUMNS c
WHERE c.TABLE_SCHEMA = :schema AND c.TABLE_NAME = :table
ORDER BY c.ORDINAL_POSITION
"""

INDEXES_SQL = """
SELECT
  INDEX_NAME AS index_name,
  COLUMN_NAME AS column_name,
  NON_UNIQUE AS non_unique,
  INDEX_TYPE AS index_type
FROM INFORMATION_SCHEMA.STATISTICS
WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table
ORDER BY INDEX_NAME, SEQ_IN_INDEX
"""

FOREIGN_KEYS_SQL = """
SELECT
  kcu.COLUMN_NAME AS column_name,
  kcu.REFERENCED_TABLE_NAME AS referenced_table,
  kcu.REFERENCED_COLUMN_NAME AS referenced_column,
  kcu.CONSTRAINT_NAME AS constraint_name,
  rc.UPDATE_RULE AS update_rule,
  rc.DELETE_RULE AS delete_rule
FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
LEFT JOIN INFORMATION_SCHEMA.REFERENTIAL_CONSTRAINTS rc
  ON kcu.CONSTRAINT_NAME = rc.CONSTRAINT_NAME
  AND kcu.TABLE_SCHEMA = rc.CONSTRAINT_SCHEMA
WHERE kcu.TABLE_SCHEMA = :schema
  AND kcu.TABLE_NAME = :table
  AND kcu.REFERENCED_TABLE_NAME IS NOT NULL
ORDER BY kcu.CONSTRAINT_NAME, kcu.ORDINAL_POSITION
"""

# InnoDB statistics estimate, not an exact count
ROW_ESTIMATE_SQL = """
SELECT TABLE_ROWS AS estimate
FROM INFORMATION_SCHEMA.TABLES
WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table
"""


class MySQLAdapter(IntrospectionAdapter):
    """MySQL and MariaDB. Databases play the role of schemas."""

    dialect = "mysql"
    excluded_schemas = ("information_schema", "mysql", "performance_schema", "sys")

    def list_schemas(self) -> List[str]:
        rows = self._rows("SELECT SCHEMA_NAME AS name FROM INFORMATION_SCHEMA.SCHEMATA ORDER BY SCHEMA_NAME")
        return self._filter_schemas([row["name"] for row in rows])

    def list_tables(self, schema: str) -> List[str]:
        rows = self._rows(
            "SELECT TABLE_NAME AS name FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_SCHEMA = :schema AND TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME",
            schema=schema,
        )
        return [row["name"] for row in rows]

    def get_columns(self, schema: str, table: str) -> List[ColumnMetadata]:
        return [
            ColumnMetadata(
                name=row["name"],
                type=as_text(row["type"]),
                nullable=as_bool(row["nullable"]),
                default_value=as_text(row["default_value"]),
                is_primary_key=as_bool(row["is_primary_key"]),
                is_foreign_key=as_bool(row["is_foreign_key"]),
                extra=row.get("extra") or "",
            )
            for row in self._rows(COLUMNS_SQL, schema=schema, table=table)
        ]

    def get_indexes(self, schema: str, table: str) -> List[IndexMetadata]:
        return [
            IndexMetadata(
                name=row["index_name"],
                column_name=row["column_name"] or "",
                is_unique=not as_bool(row["non_unique"]),
                index_type=row["index_type"] or "",
            )
            for row in self._rows(INDEXES_SQL, schema=schema, table=table)
        ]

    def get_foreign_keys(self, schema: str, table: str) -> List[ForeignKeyMetadata]:
        return [
            ForeignKeyMetadata(
                column_name=row["column_name"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
                constraint_name=row["constraint_name"],
                update_rule=row["update_rule"],
                delete_rule=row["delete_rule"],
            )
            for row in self._rows(FOREIGN_KEYS_SQL, schema=schema, table=table)
        ]

    def estimate_row_count(self, schema: str, table: str) -> Optional[int]:
        estimate = self._scalar(ROW_ESTIMATE_SQL, schema=schema, table=table)
        return None if estimate is None else int(estimate)

    def get_version(self) -> Optional[str]:
        return as_text(self._scalar("SELECT VERSION()"))
