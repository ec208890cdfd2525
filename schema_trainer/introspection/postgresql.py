"""PostgreSQL-family introspection via information_schema and pg_catalog."""

from typing import List, Optional

from schema_trainer.introspection.base import IntrospectionAdapter, as_bool, as_text
from schema_trainer.schemas.schema_data import ColumnMetadata, ForeignKeyMetadata, IndexMetadata

COLUMNS_SQL = """
SELECT
  c.column_name AS name,
  c.data_type AS type,
  c.character_maximum_length AS max_length,
  c.is_nullable = 'YES' AS nullable,
  c.column_default AS default_value,
  EXISTS (
    SELECT 1
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
      AND tc.table_schema = kcu.table_schema
      AND tc.table_name = kcu.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = c.table_schema
      AND tc.table_name = c.table_name
      AND kcu.column_name = c.column_name
  ) AS is_primary_key,
  EXISTS (
    SELECT 1
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
      AND tc.table_schema = kcu.table_schema
      AND tc.table_name = kcu.table_name
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = c.table_schema
      AND tc.table_name = c.table_name
      AND kcu.column_name = c.column_name
  ) AS is_foreign_key
FROM information_schema.columns c
WHERE c.table_schema = :schema AND c.table_name = :table
ORDER BY c.ordinal_position
"""

INDEXES_SQL = """
SELECT
  i.relname AS index_name,
  a.attname AS column_name,
  ix.indisunique AS is_unique,
  am.amname AS index_type
FROM pg_class t
JOIN pg_index ix ON t.oid = ix.indrelid
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
JOIN pg_namespace n ON n.oid = t.relnamespace
JOIN pg_am am ON i.relam = am.oid
WHERE n.nspname = :schema AND t.relname = :table
ORDER BY i.relname, a.attnum
"""

FOREIGN_KEYS_SQL = """
SELECT
  kcu.column_name AS column_name,
  ccu.table_name AS referenced_table,
  ccu.column_name AS referenced_column,
  tc.constraint_name AS constraint_name,
  rc.update_rule AS update_rule,
  rc.delete_rule AS delete_rule
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
  AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
  ON ccu.constraint_name = tc.constraint_name
  AND ccu.table_schema = tc.table_schema
JOIN information_schema.referential_constraints rc
  ON tc.constraint_name = rc.constraint_name
  AND tc.table_schema = rc.constraint_schema
WHERE tc.constraint_type = 'FOREIGN KEY'
  AND tc.table_schema = :schema
  AND tc.table_name = :table
ORDER BY tc.constraint_name, kcu.ordinal_position
"""

# Planner estimate; -1 means the table was never analyzed
ROW_ESTIMATE_SQL = """
SELECT CAST(c.reltuples AS BIGINT) AS estimate
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE n.nspname = :schema AND c.relname = :table AND c.relkind IN ('r', 'p')
"""


class PostgreSQLAdapter(IntrospectionAdapter):
    """PostgreSQL catalog queries. Row counts are planner estimates."""

    dialect = "postgresql"
    excluded_schemas = ("information_schema", "pg_catalog", "pg_toast")

    def list_schemas(self) -> List[str]:
        rows = self._rows("SELECT schema_name FROM information_schema.schemata ORDER BY schema_name")
        names = [row["schema_name"] for row in rows]
        names = [name for name in names if not name.startswith(("pg_temp_", "pg_toast_temp_"))]
        return self._filter_schemas(names)

    def list_tables(self, schema: str) -> List[str]:
        rows = self._rows(
            "SELECT tablename FROM pg_tables WHERE schemaname = :schema ORDER BY tablename",
            schema=schema,
        )
        return [row["tablename"] for row in rows]

    def get_columns(self, schema: str, table: str) -> List[ColumnMetadata]:
        columns = []
        for row in self._rows(COLUMNS_SQL, schema=schema, table=table):
            column_type = row["type"]
            if row.get("max_length"):
                column_type = f"{column_type}({row['max_length']})"
            columns.append(
                ColumnMetadata(
                    name=row["name"],
                    type=column_type,
                    nullable=as_bool(row["nullable"]),
                    default_value=as_text(row["default_value"]),
                    is_primary_key=as_bool(row["is_primary_key"]),
                    is_foreign_key=as_bool(row["is_foreign_key"]),
                )
            )
        return columns

    def get_indexes(self, schema: str, table: str) -> List[IndexMetadata]:
        return [
            IndexMetadata(
                name=row["index_name"],
                column_name=row["column_name"],
                is_unique=as_bool(row["is_unique"]),
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
        if estimate is None or int(estimate) < 0:
            return None
        return int(estimate)

    def get_version(self) -> Optional[str]:
        return as_text(self._scalar("SELECT version()"))


class SupabaseAdapter(PostgreSQLAdapter):
    """Managed PostgreSQL: same queries, platform schemas hidden."""

    dialect = "supabase"
    excluded_schemas = PostgreSQLAdapter.excluded_schemas + (
        "auth",
        "storage",
        "realtime",
        "_realtime",
        "extensions",
        "graphql",
        "graphql_public",
        "net",
        "pgbouncer",
        "pgsodium",
        "pgsodium_masks",
        "supabase_functions",
        "supabase_migrations",
        "vault",
        "cron",
        "_analytics",
    )
