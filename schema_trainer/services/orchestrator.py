"""Job orchestration facade for schema training.

Connects the training service to the job queue: callers request training,
a schema-rebuild job carries it to a worker, and the queue relays the
job's lifecycle and progress to its notification hub.
"""

import logging
import time
from typing import Any, Dict, List, Optional
from uuid import UUID

from schema_trainer.exceptions import ValidationError
from schema_trainer.schemas.job import JobOptions, JobRecord, JobType
from schema_trainer.schemas.schema_data import StaleTrainingResponse, TrainingOptions, TrainResponse
from schema_trainer.services.job_queue import JobQueue, ProgressReporter
from schema_trainer.services.schema_cache import SchemaCacheStore
from schema_trainer.services.training import SchemaTrainingService

logger = logging.getLogger(__name__)


def training_singleton_key(connection_id: UUID) -> str:
    return f"{JobType.SCHEMA_REBUILD.value}:{connection_id}"


class TrainingOrchestrator:
    """Background and inline schema training."""

    def __init__(
        self,
        queue: JobQueue,
        training_service: SchemaTrainingService,
        cache_store: SchemaCacheStore,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.queue = queue
        self.training_service = training_service
        self.cache_store = cache_store
        self.concurrency = concurrency
        self.poll_interval = poll_interval

    def register(self):
        """Register the schema-rebuild worker pool on the queue."""
        self.queue.register_worker(
            JobType.SCHEMA_REBUILD,
            self.handle_schema_rebuild,
            concurrency=self.concurrency,
            poll_interval=self.poll_interval,
        )

    def request_training(
        self,
        connection_id: UUID,
        user_id: Optional[str] = None,
        force: bool = False,
        options: Optional[TrainingOptions] = None,
        wait: bool = False,
    ) -> TrainResponse:
        """Train inline when ``wait`` is set, otherwise enqueue a schema-rebuild job.

        Raises:
            ConnectionNotFoundError, TrainingInProgressError, RecentlyTrainedError
        """
        if wait:
            record = self.training_service.train_connection(connection_id, options, force=force)
            return TrainResponse(status="completed", message="Schema training completed", cache=record)

        self.training_service.check_can_train(connection_id, force)
        job_id = self.enqueue_training(connection_id, user_id=user_id, force=force, options=options)
        job = self.queue.get_job(job_id)
        status = "training" if job is not None and job.state == "active" else "pending"
        return TrainResponse(status=status, message="Schema training job queued", job_id=job_id)

    def enqueue_training(
        self,
        connection_id: UUID,
        user_id: Optional[str] = None,
        force: bool = False,
        options: Optional[TrainingOptions] = None,
    ) -> UUID:
        """Enqueue a training job; at most one is open per connection."""
        payload: Dict[str, Any] = {"connectionId": str(connection_id), "force": force}
        if user_id:
            payload["userId"] = user_id
        if options is not None:
            payload["options"] = options.model_dump(mode="json", by_alias=True, exclude_none=True)

        job_id = self.queue.enqueue(
            JobType.SCHEMA_REBUILD,
            payload,
            user_id=user_id,
            options=JobOptions(singleton_key=training_singleton_key(connection_id)),
        )
        cache = self.cache_store.get(connection_id)
        if cache is None or cache.training_status != "training":
            self.cache_store.upsert_status(connection_id, "pending")
        logger.info(f"Schema training job {job_id} queued for connection {connection_id}")
        return job_id

    def enqueue_stale_connections(self, max_age_seconds: int) -> StaleTrainingResponse:
        """Queue forced re-training for every connection older than ``max_age_seconds``."""
        connection_ids = self.cache_store.list_stale_connections(max_age_seconds)
        job_ids: List[UUID] = []
        for connection_id in connection_ids:
            job_ids.append(self.enqueue_training(connection_id, force=True))
        logger.info(f"Queued re-training for {len(connection_ids)} stale connection(s)")
        return StaleTrainingResponse(connection_ids=connection_ids, job_ids=job_ids)

    def handle_schema_rebuild(self, job: JobRecord, report_progress: ProgressReporter) -> Dict[str, Any]:
        """Worker handler for schema-rebuild jobs.

        Guards were applied when the job was requested, so the run is forced
        here; a retry after a crash must not trip over its own ``training``
        status.
        """
        connection_id = job.payload.get("connectionId")
        if not connection_id:
            raise ValidationError("connectionId is required")
        try:
            connection_id = UUID(str(connection_id))
        except ValueError:
            raise ValidationError(f"Invalid connectionId: {connection_id}")
        options = TrainingOptions.model_validate(job.payload.get("options") or {})

        started = time.monotonic()
        record = self.training_service.train_connection(
            connection_id,
            options,
            force=True,
            report_progress=report_progress,
        )
        document = record.schema_data or {}
        return {
            "success": True,
            "connectionId": str(connection_id),
            "totalTables": document.get("total_tables", 0),
            "totalColumns": document.get("total_columns", 0),
            "schemas": len(document.get("schemas", [])),
            "duration": int((time.monotonic() - started) * 1000),
        }
