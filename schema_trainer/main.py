"""FastAPI application entry point and component wiring."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import sqlalchemy
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from schema_trainer import __version__
from schema_trainer.config import Settings, settings as default_settings
from schema_trainer.database import Base, create_db_engine, create_session_factory
from schema_trainer.exceptions import SchemaTrainerError
from schema_trainer.routes import events, jobs, schema_training
from schema_trainer.services.connections import ConnectionService
from schema_trainer.services.job_queue import JobQueue
from schema_trainer.services.notifications import NotificationHub
from schema_trainer.services.orchestrator import TrainingOrchestrator
from schema_trainer.services.schema_cache import SchemaCacheStore
from schema_trainer.services.trainer import SchemaTrainer
from schema_trainer.services.training import SchemaTrainingService

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Explicitly constructed service components, one set per application."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    hub: NotificationHub
    queue: JobQueue
    cache_store: SchemaCacheStore
    connections: ConnectionService
    trainer: SchemaTrainer
    training_service: SchemaTrainingService
    orchestrator: TrainingOrchestrator


def build_container(settings: Settings, engine: Optional[Engine] = None) -> Container:
    """Construct and wire every component; the schema-rebuild worker is registered."""
    engine = engine or create_db_engine(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    hub = NotificationHub(max_queue_size=settings.SUBSCRIBER_QUEUE_SIZE)
    queue = JobQueue(
        session_factory,
        hub=hub,
        default_concurrency=settings.WORKER_CONCURRENCY,
        default_poll_interval=settings.WORKER_POLL_INTERVAL,
    )
    cache_store = SchemaCacheStore(session_factory)
    connections = ConnectionService(
        session_factory,
        connect_timeout=settings.TARGET_CONNECT_TIMEOUT,
        connect_attempts=settings.TARGET_CONNECT_ATTEMPTS,
    )
    trainer = SchemaTrainer(connections)
    training_service = SchemaTrainingService(
        trainer,
        cache_store,
        freshness_seconds=settings.TRAINING_FRESHNESS_SECONDS,
        stale_after_seconds=settings.TRAINING_STALE_AFTER_SECONDS,
    )
    orchestrator = TrainingOrchestrator(queue, training_service, cache_store)
    orchestrator.register()

    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        hub=hub,
        queue=queue,
        cache_store=cache_store,
        connections=connections,
        trainer=trainer,
        training_service=training_service,
        orchestrator=orchestrator,
    )


def run_migrations(container: Container):
    """Create the service tables when the jobs table is missing."""
    if sqlalchemy.inspect(container.engine).has_table("jobs"):
        logger.info("Database tables already exist, skipping migrations")
        return

    alembic_ini = os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini")
    if os.path.exists(alembic_ini):
        logger.info("Running database migrations...")
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(alembic_ini)
        alembic_cfg.set_main_option("sqlalchemy.url", container.settings.DATABASE_URL)
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    else:
        logger.info("No alembic.ini found, creating tables from metadata")
        Base.metadata.create_all(container.engine)


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """Create the FastAPI application around a container."""
    settings = settings or (container.settings if container else default_settings)
    container = container or build_container(settings)

    app = FastAPI(
        title="Schema Trainer",
        description="Background job queue and schema metadata training for saved database connections",
        version=__version__,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs.router)
    app.include_router(schema_training.router)
    app.include_router(events.router)

    @app.exception_handler(SchemaTrainerError)
    async def handle_service_error(request: Request, exc: SchemaTrainerError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.on_event("startup")
    def startup_event():
        logger.info("Starting application...")
        try:
            run_migrations(container)
        except Exception as e:
            logger.error(f"Startup database check/migration error: {e}")
            logger.info("Continuing startup - assuming database is ready")

        if settings.START_WORKERS:
            container.queue.start()

    @app.on_event("shutdown")
    def shutdown_event():
        logger.info("Shutting down application...")
        container.queue.stop(graceful=True, timeout=settings.WORKER_SHUTDOWN_TIMEOUT)
        container.engine.dispose()

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "healthy", "queue_started": container.queue.started}

    return app


logging.basicConfig(
    level=default_settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = create_app()
