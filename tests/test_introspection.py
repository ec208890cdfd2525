"""Tests for per-dialect introspection adapters."""

import pytest
from sqlalchemy import create_engine, text

from schema_trainer.exceptions import UnsupportedDatabaseError
from schema_trainer.introspection import (
    MySQLAdapter,
    PostgreSQLAdapter,
    SQLiteAdapter,
    SupabaseAdapter,
    get_adapter_class,
)


class FakeResult:
    def __init__(self, rows):
        self.rows = rows

    def mappings(self):
        return self

    def all(self):
        return self.rows

    def scalar(self):
        if not self.rows:
            return None
        return next(iter(self.rows[0].values()))


class FakeConnection:
    """Answers catalog queries by SQL fragment and records bound parameters."""

    def __init__(self, responses):
        self.responses = responses
        self.executed = []

    def execute(self, statement, params=None):
        sql = str(statement)
        self.executed.append((sql, params))
        for fragment, rows in self.responses:
            if fragment in sql:
                return FakeResult(rows)
        raise AssertionError(f"Unexpected query: {sql}")


@pytest.fixture
def sqlite_adapter(target_db):
    engine = create_engine(f"sqlite:///{target_db}")
    with engine.connect() as connection:
        yield SQLiteAdapter(connection)
    engine.dispose()


def test_registry_selects_adapter_by_dialect():
    assert get_adapter_class("postgresql") is PostgreSQLAdapter
    assert get_adapter_class("supabase") is SupabaseAdapter
    assert get_adapter_class("MariaDB") is MySQLAdapter
    assert get_adapter_class("sqlite") is SQLiteAdapter
    with pytest.raises(UnsupportedDatabaseError):
        get_adapter_class("oracle")


def test_postgres_list_schemas_hides_system_schemas():
    connection = FakeConnection(
        [
            (
                "information_schema.schemata",
                [
                    {"schema_name": name}
                    for name in ("app", "information_schema", "pg_catalog", "pg_temp_3", "pg_toast", "public")
                ],
            )
        ]
    )
    assert PostgreSQLAdapter(connection).list_schemas() == ["app", "public"]


def test_supabase_hides_platform_schemas():
    rows = [{"schema_name": name} for name in ("auth", "public", "storage", "realtime", "extensions")]
    connection = FakeConnection([("information_schema.schemata", rows)])
    assert SupabaseAdapter(connection).list_schemas() == ["public"]


def test_postgres_columns_mapping():
    """Test that column rows map to metadata with bound schema and table."""
    connection = FakeConnection(
        [
            (
                "FROM information_schema.columns c",
                [
                    {
                        "name": "id",
                        "type": "integer",
                        "max_length": None,
                        "nullable": False,
                        "default_value": "nextval('users_id_seq'::regclass)",
                        "is_primary_key": True,
                        "is_foreign_key": False,
                    },
                    {
                        "name": "email",
                        "type": "character varying",
                        "max_length": 255,
                        "nullable": True,
                        "default_value": None,
                        "is_primary_key": False,
                        "is_foreign_key": False,
                    },
                ],
            )
        ]
    )

    columns = PostgreSQLAdapter(connection).get_columns("public", "users")

    assert [column.name for column in columns] == ["id", "email"]
    assert columns[0].is_primary_key and not columns[0].nullable
    assert columns[1].type == "character varying(255)"
    assert connection.executed[0][1] == {"schema": "public", "table": "users"}


def test_postgres_indexes_foreign_keys_and_estimates():
    connection = FakeConnection(
        [
            (
                "pg_index",
                [{"index_name": "orders_pkey", "column_name": "id", "is_unique": True, "index_type": "btree"}],
            ),
            (
                "referential_constraints",
                [
                    {
                        "column_name": "user_id",
                        "referenced_table": "users",
                        "referenced_column": "id",
                        "constraint_name": "orders_user_id_fkey",
                        "update_rule": "NO ACTION",
                        "delete_rule": "CASCADE",
                    }
                ],
            ),
            ("reltuples", [{"estimate": -1}]),
            ("version()", [{"version": "PostgreSQL 16.2"}]),
        ]
    )
    adapter = PostgreSQLAdapter(connection)

    indexes = adapter.get_indexes("public", "orders")
    assert indexes[0].name == "orders_pkey" and indexes[0].is_unique

    foreign_keys = adapter.get_foreign_keys("public", "orders")
    assert foreign_keys[0].referenced_table == "users"
    assert foreign_keys[0].delete_rule == "CASCADE"

    # Never analyzed
    assert adapter.estimate_row_count("public", "orders") is None
    assert adapter.get_version() == "PostgreSQL 16.2"


def test_mysql_mapping_normalizes_flags():
    """Test MySQL 0/1 flags, NON_UNIQUE inversion and extra."""
    connection = FakeConnection(
        [
            ("INFORMATION_SCHEMA.SCHEMATA", [{"name": name} for name in ("mysql", "shop", "sys")]),
            (
                "INFORMATION_SCHEMA.COLUMNS",
                [
                    {
                        "name": "id",
                        "type": "int unsigned",
                        "nullable": 0,
                        "default_value": None,
                        "is_primary_key": 1,
                        "is_foreign_key": 0,
                        "extra": "auto_increment",
                    }
                ],
            ),
            (
                "INFORMATION_SCHEMA.STATISTICS",
                [
                    {"index_name": "PRIMARY", "column_name": "id", "non_unique": 0, "index_type": "BTREE"},
                    {"index_name": "idx_status", "column_name": "status", "non_unique": 1, "index_type": "BTREE"},
                ],
            ),
            ("TABLE_ROWS", [{"estimate": 1200}]),
        ]
    )
    adapter = MySQLAdapter(connection)

    assert adapter.list_schemas() == ["shop"]
    column = adapter.get_columns("shop", "orders")[0]
    assert column.is_primary_key is True
    assert column.nullable is False
    assert column.extra == "auto_increment"
    indexes = adapter.get_indexes("shop", "orders")
    assert [index.is_unique for index in indexes] == [True, False]
    assert adapter.estimate_row_count("shop", "orders") == 1200


def test_sqlite_enumerates_main_schema_and_tables(sqlite_adapter):
    assert sqlite_adapter.list_schemas() == ["main"]
    assert sqlite_adapter.list_tables("main") == ["orders", "users"]


def test_sqlite_columns(sqlite_adapter):
    columns = {column.name: column for column in sqlite_adapter.get_columns("main", "orders")}

    assert columns["id"].is_primary_key
    assert not columns["id"].nullable
    assert columns["user_id"].is_foreign_key
    assert not columns["user_id"].nullable
    assert columns["total"].default_value == "0"
    assert columns["total"].nullable


def test_sqlite_indexes_resolve_columns(sqlite_adapter):
    orders_indexes = sqlite_adapter.get_indexes("main", "orders")
    assert [(index.name, index.column_name, index.is_unique) for index in orders_indexes] == [
        ("idx_orders_user_id", "user_id", False)
    ]

    users_indexes = sqlite_adapter.get_indexes("main", "users")
    assert [(index.column_name, index.is_unique) for index in users_indexes] == [("email", True)]


def test_sqlite_foreign_keys_and_counts(sqlite_adapter):
    foreign_keys = sqlite_adapter.get_foreign_keys("main", "orders")

    assert len(foreign_keys) == 1
    assert foreign_keys[0].column_name == "user_id"
    assert foreign_keys[0].referenced_table == "users"
    assert foreign_keys[0].referenced_column == "id"
    assert foreign_keys[0].delete_rule == "CASCADE"
    assert sqlite_adapter.estimate_row_count("main", "orders") == 3
    assert sqlite_adapter.get_version()


def test_sqlite_quotes_identifiers(tmp_path):
    """Test that table names containing quotes are escaped, not interpolated raw."""
    engine = create_engine(f"sqlite:///{tmp_path / 'odd.db'}")
    with engine.begin() as connection:
        connection.execute(text('CREATE TABLE "we""ird" (id INTEGER PRIMARY KEY, "na me" TEXT)'))
    with engine.connect() as connection:
        adapter = SQLiteAdapter(connection)
        assert adapter.list_tables("main") == ['we"ird']
        assert [column.name for column in adapter.get_columns("main", 'we"ird')] == ["id", "na me"]
        assert adapter.estimate_row_count("main", 'we"ird') == 0
    engine.dispose()
