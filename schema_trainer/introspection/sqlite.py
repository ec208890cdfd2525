"""SQLite introspection via PRAGMA statements.

PRAGMA arguments cannot be bound parameters, so identifiers are quoted.
"""

import logging
from typing import List, Optional

from schema_trainer.introspection.base import IntrospectionAdapter, as_text
from schema_trainer.schemas.schema_data import ColumnMetadata, ForeignKeyMetadata, IndexMetadata

logger = logging.getLogger(__name__)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteAdapter(IntrospectionAdapter):
    """Embedded-file databases. Attached databases are the schemas."""

    dialect = "sqlite"
    excluded_schemas = ("temp",)
    row_counts_are_exact = True

    def _pragma(self, name: str, schema: str, argument: Optional[str] = None):
        prefix = "" if schema == "main" else f"{quote_identifier(schema)}."
        suffix = f"({quote_identifier(argument)})" if argument is not None else ""
        return self._rows(f"PRAGMA {prefix}{name}{suffix}")

    def list_schemas(self) -> List[str]:
        rows = self._rows("PRAGMA database_list")
        return self._filter_schemas([row["name"] for row in rows])

    def list_tables(self, schema: str) -> List[str]:
        rows = self._rows(
            f"SELECT name FROM {quote_identifier(schema)}.sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row["name"] for row in rows]

    def get_columns(self, schema: str, table: str) -> List[ColumnMetadata]:
        try:
            fk_columns = {fk.column_name for fk in self.get_foreign_keys(schema, table)}
        except Exception as e:
            logger.warning(f"Cannot read foreign keys for {schema}.{table}: {e}")
            fk_columns = set()

        return [
            ColumnMetadata(
                name=row["name"],
                type=row["type"] or None,
                nullable=not row["notnull"] and not row["pk"],
                default_value=as_text(row["dflt_value"]),
                is_primary_key=row["pk"] > 0,  # position within a composite key
                is_foreign_key=row["name"] in fk_columns,
            )
            for row in self._pragma("table_info", schema, table)
        ]

    def get_indexes(self, schema: str, table: str) -> List[IndexMetadata]:
        indexes = []
        for index in self._pragma("index_list", schema, table):
            columns = self._pragma("index_info", schema, index["name"])
            for column in columns or [{"name": ""}]:
                indexes.append(
                    IndexMetadata(
                        name=index["name"],
                        column_name=column["name"] or "",
                        is_unique=bool(index["unique"]),
                        index_type="btree",
                    )
                )
        return indexes

    def get_foreign_keys(self, schema: str, table: str) -> List[ForeignKeyMetadata]:
        return [
            ForeignKeyMetadata(
                column_name=row["from"],
                referenced_table=row["table"],
                referenced_column=row["to"],
                constraint_name=f"fk_{table}_{row['id']}",
                update_rule=row["on_update"],
                delete_rule=row["on_delete"],
            )
            for row in self._pragma("foreign_key_list", schema, table)
        ]

    def estimate_row_count(self, schema: str, table: str) -> Optional[int]:
        # Exact count; embedded databases are small enough for a scan
        count = self._scalar(f"SELECT COUNT(*) FROM {quote_identifier(schema)}.{quote_identifier(table)}")
        return None if count is None else int(count)

    def get_version(self) -> Optional[str]:
        return as_text(self._scalar("SELECT sqlite_version()"))
