"""FastAPI dependencies resolving components from the application container."""

from fastapi import Request

from schema_trainer.config import Settings
from schema_trainer.services.job_queue import JobQueue
from schema_trainer.services.notifications import NotificationHub
from schema_trainer.services.orchestrator import TrainingOrchestrator
from schema_trainer.services.schema_cache import SchemaCacheStore


def get_queue(request: Request) -> JobQueue:
    return request.app.state.container.queue


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.container.hub


def get_orchestrator(request: Request) -> TrainingOrchestrator:
    return request.app.state.container.orchestrator


def get_cache_store(request: Request) -> SchemaCacheStore:
    return request.app.state.container.cache_store


def get_heartbeat(request: Request) -> float:
    return request.app.state.container.settings.SSE_HEARTBEAT_SECONDS


def get_settings(request: Request) -> Settings:
    return request.app.state.container.settings
