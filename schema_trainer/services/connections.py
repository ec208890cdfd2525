"""Connection collaborator: resolves connection ids and opens target databases."""

import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
from uuid import UUID

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from schema_trainer.exceptions import ConnectionNotFoundError, TargetUnavailableError
from schema_trainer.introspection import DatabaseType, resolve_database_type
from schema_trainer.models.connection import DatabaseConnection
from schema_trainer.schemas.connection import ConnectionConfig

logger = logging.getLogger(__name__)

DRIVERS = {
    DatabaseType.POSTGRESQL: "postgresql+psycopg2",
    DatabaseType.SUPABASE: "postgresql+psycopg2",
    DatabaseType.MYSQL: "mysql+pymysql",
    DatabaseType.MARIADB: "mysql+pymysql",
    DatabaseType.SQLITE: "sqlite",
}

DEFAULT_PORTS = {
    DatabaseType.POSTGRESQL: 5432,
    DatabaseType.SUPABASE: 5432,
    DatabaseType.MYSQL: 3306,
    DatabaseType.MARIADB: 3306,
}


class ConnectionService:
    """Reads saved connections and opens read-only sessions on their targets.

    Args:
        session_factory: Session factory for the service database
        connect_timeout: Seconds before a single connect attempt gives up
        connect_attempts: Connect attempts before TargetUnavailableError
        connect_wait: tenacity wait strategy between attempts
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        connect_timeout: int = 10,
        connect_attempts: int = 3,
        connect_wait=None,
    ):
        self.session_factory = session_factory
        self.connect_timeout = connect_timeout
        self.connect_attempts = max(1, connect_attempts)
        self.connect_wait = connect_wait or wait_exponential(multiplier=1, min=1, max=10)

    def get_connection(self, connection_id: UUID) -> ConnectionConfig:
        """Resolve an active connection.

        Raises:
            ConnectionNotFoundError: unknown or deactivated connection
        """
        with self.session_factory() as db:
            row = db.get(DatabaseConnection, connection_id)
            if row is None or not row.is_active:
                raise ConnectionNotFoundError(f"Connection {connection_id} not found")
            return ConnectionConfig.model_validate(row)

    def build_url(self, config: ConnectionConfig) -> URL:
        """SQLAlchemy URL for the target; ``connection_string`` wins when set.

        A connection string keeps its host, credentials and query but always
        uses the driver installed for its database type.
        """
        db_type = resolve_database_type(config.db_type)
        if config.connection_string is not None:
            url = make_url(config.connection_string.get_secret_value())
            return url.set(drivername=DRIVERS[db_type])

        if db_type == DatabaseType.SQLITE:
            return URL.create("sqlite", database=config.database)

        query: Dict[str, str] = {}
        if db_type in (DatabaseType.POSTGRESQL, DatabaseType.SUPABASE) and (
            config.ssl or db_type == DatabaseType.SUPABASE
        ):
            query["sslmode"] = "require"

        return URL.create(
            DRIVERS[db_type],
            username=config.username,
            password=config.password.get_secret_value() if config.password else None,
            host=config.host or "localhost",
            port=config.port or DEFAULT_PORTS[db_type],
            database=config.database or None,
            query=query,
        )

    def _connect_args(self, config: ConnectionConfig) -> Dict[str, Any]:
        db_type = resolve_database_type(config.db_type)
        if db_type == DatabaseType.SQLITE:
            return {"timeout": self.connect_timeout}
        connect_args: Dict[str, Any] = {"connect_timeout": self.connect_timeout}
        if db_type in (DatabaseType.MYSQL, DatabaseType.MARIADB) and config.ssl:
            connect_args["ssl"] = {"check_hostname": True}
        return connect_args

    @contextmanager
    def open_target(self, config: ConnectionConfig) -> Iterator[Connection]:
        """Open an autocommit connection to the target database.

        Every catalog query runs in its own implicit transaction, so one
        failed query never poisons the queries after it.

        Raises:
            TargetUnavailableError: the target could not be reached after
                ``connect_attempts`` tries. The message never includes the
                driver's error text.
        """
        db_type = resolve_database_type(config.db_type)
        engine = self._create_engine(config)
        if db_type == DatabaseType.SQLITE and not _sqlite_file_exists(engine.url.database):
            engine.dispose()
            raise TargetUnavailableError(f"SQLite database file for '{config.name}' does not exist")

        try:
            connection = self._connect_with_retry(engine, config)
            try:
                yield connection
            finally:
                connection.close()
        finally:
            engine.dispose()

    def _create_engine(self, config: ConnectionConfig) -> Engine:
        try:
            return create_engine(
                self.build_url(config),
                connect_args=self._connect_args(config),
                isolation_level="AUTOCOMMIT",
                poolclass=NullPool,
            )
        except (SQLAlchemyError, ImportError) as e:
            # A malformed URL echoes the connection string; log the class only
            logger.error(f"Cannot open target {config.id} ({config.db_type}): {e.__class__.__name__}")
            raise TargetUnavailableError(
                f"Could not open a {config.db_type} driver for database '{config.name}'"
            ) from None

    def _connect_with_retry(self, engine, config: ConnectionConfig) -> Connection:
        retrying = Retrying(
            stop=stop_after_attempt(self.connect_attempts),
            wait=self.connect_wait,
            retry=retry_if_exception_type(SQLAlchemyError),
            reraise=True,
        )
        try:
            return retrying(engine.connect)
        except SQLAlchemyError as e:
            # Driver messages can embed credentials; log the class only
            logger.error(f"Cannot connect to target {config.id} ({config.db_type}): {e.__class__.__name__}")
            raise TargetUnavailableError(
                f"Could not connect to {config.db_type} database '{config.name}'"
            ) from None


def _sqlite_file_exists(path: Optional[str]) -> bool:
    if not path or path == ":memory:":
        return True
    return os.path.exists(path)
