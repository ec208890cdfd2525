"""Pytest configuration and fixtures."""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, text
from tenacity import wait_none

import schema_trainer.models  # noqa: F401  (registers the tables on Base.metadata)
from schema_trainer.database import Base, create_db_engine, create_session_factory
from schema_trainer.models.connection import DatabaseConnection
from schema_trainer.services.connections import ConnectionService
from schema_trainer.services.job_queue import JobQueue
from schema_trainer.services.notifications import NotificationHub
from schema_trainer.services.orchestrator import TrainingOrchestrator
from schema_trainer.services.schema_cache import SchemaCacheStore
from schema_trainer.services.trainer import SchemaTrainer
from schema_trainer.services.training import SchemaTrainingService


class FakeClock:
    """Controllable naive-UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite service database, shareable across worker threads."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'service.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def hub():
    return NotificationHub(max_queue_size=100)


@pytest.fixture
def queue(session_factory, hub, clock):
    queue = JobQueue(session_factory, hub=hub, clock=clock, default_concurrency=2, default_poll_interval=0.01)
    yield queue
    queue.stop(graceful=False)


@pytest.fixture
def cache_store(session_factory, clock):
    return SchemaCacheStore(session_factory, clock=clock)


@pytest.fixture
def connections(session_factory):
    return ConnectionService(session_factory, connect_timeout=1, connect_attempts=2, connect_wait=wait_none())


@pytest.fixture
def target_db(tmp_path):
    """A real SQLite target database with users and orders."""
    path = tmp_path / "target.db"
    target = create_engine(f"sqlite:///{path}")
    with target.begin() as conn:
        conn.execute(text("CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL UNIQUE, name TEXT)"))
        conn.execute(
            text(
                "CREATE TABLE orders ("
                "id INTEGER PRIMARY KEY, "
                "user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE, "
                "total NUMERIC DEFAULT 0)"
            )
        )
        conn.execute(text("CREATE INDEX idx_orders_user_id ON orders (user_id)"))
        conn.execute(text("INSERT INTO users (email, name) VALUES ('a@example.com', 'A'), ('b@example.com', 'B')"))
        conn.execute(text("INSERT INTO orders (user_id, total) VALUES (1, 10), (1, 20), (2, 5)"))
    target.dispose()
    return str(path)


@pytest.fixture
def make_connection(session_factory, clock):
    """Insert a saved connection row and return its id."""

    def _make(db_type: str = "sqlite", database: str = None, is_active: bool = True, **fields) -> uuid.UUID:
        connection_id = uuid.uuid4()
        with session_factory() as db:
            db.add(
                DatabaseConnection(
                    id=connection_id,
                    name=fields.pop("name", f"{db_type}-connection"),
                    db_type=db_type,
                    database=database,
                    is_active=is_active,
                    created_at=clock(),
                    **fields,
                )
            )
            db.commit()
        return connection_id

    return _make


@pytest.fixture
def trainer(connections):
    return SchemaTrainer(connections)


@pytest.fixture
def training_service(trainer, cache_store, clock):
    return SchemaTrainingService(trainer, cache_store, clock=clock, freshness_seconds=3600, stale_after_seconds=7200)


@pytest.fixture
def orchestrator(queue, training_service, cache_store):
    orchestrator = TrainingOrchestrator(queue, training_service, cache_store)
    orchestrator.register()
    return orchestrator
