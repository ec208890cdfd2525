"""Schema training routes."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from schema_trainer.config import Settings
from schema_trainer.routes.dependencies import get_cache_store, get_orchestrator, get_settings
from schema_trainer.schemas.schema_data import (
    SchemaCacheRecord,
    StaleTrainingResponse,
    TrainRequest,
    TrainResponse,
)
from schema_trainer.services.orchestrator import TrainingOrchestrator
from schema_trainer.services.schema_cache import SchemaCacheStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["schema-training"])


@router.post("/connections/{connection_id}/schema/train", response_model=TrainResponse)
def train_schema(
    connection_id: uuid.UUID,
    response: Response,
    data: Optional[TrainRequest] = None,
    orchestrator: TrainingOrchestrator = Depends(get_orchestrator),
):
    """Train a connection's schema.

    Queued requests answer 202 with the job id; ``wait=true`` trains inline
    and answers 200 with the stored cache record.
    """
    data = data or TrainRequest()
    result = orchestrator.request_training(
        connection_id,
        user_id=data.user_id,
        force=data.force,
        options=data.options,
        wait=data.wait,
    )
    if result.job_id is not None:
        response.status_code = 202
    logger.info(f"Schema training requested for {connection_id} (status: {result.status})")
    return result


@router.get("/connections/{connection_id}/schema-cache", response_model=SchemaCacheRecord)
def get_schema_cache(connection_id: uuid.UUID, cache_store: SchemaCacheStore = Depends(get_cache_store)):
    cache = cache_store.get(connection_id)
    if cache is None:
        raise HTTPException(status_code=404, detail="Schema cache not found")
    return cache


@router.delete("/connections/{connection_id}/schema-cache")
def delete_schema_cache(connection_id: uuid.UUID, cache_store: SchemaCacheStore = Depends(get_cache_store)):
    if not cache_store.delete(connection_id):
        raise HTTPException(status_code=404, detail="Schema cache not found")
    return {"deleted": True}


@router.get("/connections/stale")
def list_stale_connections(
    max_age_seconds: Optional[int] = Query(default=None, gt=0),
    settings: Settings = Depends(get_settings),
    cache_store: SchemaCacheStore = Depends(get_cache_store),
):
    """Active connections never trained or trained longer ago than ``max_age_seconds``."""
    max_age_seconds = max_age_seconds or settings.STALE_SCHEMA_MAX_AGE_SECONDS
    return {"connection_ids": cache_store.list_stale_connections(max_age_seconds)}


@router.post("/schema-training/stale", response_model=StaleTrainingResponse, status_code=202)
def retrain_stale_connections(
    max_age_seconds: Optional[int] = Query(default=None, gt=0),
    settings: Settings = Depends(get_settings),
    orchestrator: TrainingOrchestrator = Depends(get_orchestrator),
):
    """Queue forced re-training for every stale connection."""
    max_age_seconds = max_age_seconds or settings.STALE_SCHEMA_MAX_AGE_SECONDS
    return orchestrator.enqueue_stale_connections(max_age_seconds)
