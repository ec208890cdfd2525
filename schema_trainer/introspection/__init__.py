"""Per-dialect introspection adapters and the registry that selects them."""

from enum import Enum
from typing import Dict, Type, Union

from schema_trainer.exceptions import UnsupportedDatabaseError
from schema_trainer.introspection.base import IntrospectionAdapter
from schema_trainer.introspection.mysql import MySQLAdapter
from schema_trainer.introspection.postgresql import PostgreSQLAdapter, SupabaseAdapter
from schema_trainer.introspection.sqlite import SQLiteAdapter


class DatabaseType(str, Enum):
    MYSQL = "mysql"
    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"
    SUPABASE = "supabase"
    SQLITE = "sqlite"


AdapterRegistry = Dict[DatabaseType, Type[IntrospectionAdapter]]

ADAPTERS: AdapterRegistry = {
    DatabaseType.MYSQL: MySQLAdapter,
    DatabaseType.MARIADB: MySQLAdapter,
    DatabaseType.POSTGRESQL: PostgreSQLAdapter,
    DatabaseType.SUPABASE: SupabaseAdapter,
    DatabaseType.SQLITE: SQLiteAdapter,
}


def resolve_database_type(db_type: Union[str, DatabaseType]) -> DatabaseType:
    try:
        return DatabaseType(str(db_type).lower())
    except ValueError:
        raise UnsupportedDatabaseError(f"Unsupported database type: {db_type}")


def get_adapter_class(
    db_type: Union[str, DatabaseType],
    registry: AdapterRegistry = ADAPTERS,
) -> Type[IntrospectionAdapter]:
    database_type = resolve_database_type(db_type)
    adapter_class = registry.get(database_type)
    if adapter_class is None:
        raise UnsupportedDatabaseError(f"No introspection adapter for {database_type.value}")
    return adapter_class


__all__ = [
    "ADAPTERS",
    "AdapterRegistry",
    "DatabaseType",
    "IntrospectionAdapter",
    "MySQLAdapter",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
    "SupabaseAdapter",
    "get_adapter_class",
    "resolve_database_type",
]
