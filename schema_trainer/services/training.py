"""Training service: guards and cache persistence around the training engine."""

import logging
from datetime import timedelta
from typing import Callable, Optional
from uuid import UUID

from schema_trainer.exceptions import RecentlyTrainedError, TrainingInProgressError
from schema_trainer.models.types import utcnow
from schema_trainer.schemas.schema_data import SchemaCacheRecord, TrainingOptions
from schema_trainer.services.job_queue import error_message
from schema_trainer.services.schema_cache import SchemaCacheStore
from schema_trainer.services.trainer import SchemaTrainer, TRAVERSAL_END_PERCENTAGE

logger = logging.getLogger(__name__)


class SchemaTrainingService:
    """Runs one training and records its outcome in the schema cache.

    Args:
        trainer: Training engine
        cache_store: Schema cache persistence
        freshness_seconds: Re-training inside this window needs ``force``
        stale_after_seconds: A ``training`` status older than this may be restarted
    """

    def __init__(
        self,
        trainer: SchemaTrainer,
        cache_store: SchemaCacheStore,
        clock: Callable = utcnow,
        freshness_seconds: int = 3600,
        stale_after_seconds: int = 7200,
    ):
        self.trainer = trainer
        self.cache_store = cache_store
        self.clock = clock
        self.freshness_seconds = freshness_seconds
        self.stale_after_seconds = stale_after_seconds

    def _is_stuck(self, cache: SchemaCacheRecord) -> bool:
        if cache.training_started_at is None:
            return True
        return self.clock() - cache.training_started_at > timedelta(seconds=self.stale_after_seconds)

    def check_can_train(self, connection_id: UUID, force: bool = False) -> Optional[SchemaCacheRecord]:
        """Apply the in-progress and recently-trained guards.

        Raises:
            ConnectionNotFoundError: unknown connection
            TrainingInProgressError: a run is training and not stuck
            RecentlyTrainedError: trained inside the freshness window
        """
        self.trainer.connections.get_connection(connection_id)
        cache = self.cache_store.get(connection_id)
        if cache is None or force:
            return cache

        if cache.training_status == "training":
            if not self._is_stuck(cache):
                raise TrainingInProgressError()
            logger.warning(f"Training for {connection_id} started at {cache.training_started_at} looks abandoned")

        if cache.last_trained_at is not None:
            if self.clock() - cache.last_trained_at < timedelta(seconds=self.freshness_seconds):
                raise RecentlyTrainedError()
        return cache

    def train_connection(
        self,
        connection_id: UUID,
        options: Optional[TrainingOptions] = None,
        force: bool = False,
        report_progress: Optional[Callable] = None,
    ) -> SchemaCacheRecord:
        """Train ``connection_id`` now and return the stored cache record.

        On failure the record moves to ``failed`` with a readable message and
        the error propagates.
        """
        report = report_progress or (lambda *args, **kwargs: None)
        self.check_can_train(connection_id, force)
        self.cache_store.begin_training(connection_id, force=force, stale_after_seconds=self.stale_after_seconds)
        report(5, "Connecting to database")

        try:
            data = self.trainer.train(connection_id, options, report)
        except Exception as e:
            logger.error(f"Schema training failed for {connection_id}: {error_message(e)}")
            self.cache_store.upsert_document(connection_id, None, status="failed", error_message=error_message(e))
            raise

        report(TRAVERSAL_END_PERCENTAGE, "Saving schema cache")
        record = self.cache_store.upsert_document(connection_id, data.to_document(), status="completed")
        report(100, "Schema training completed")
        logger.info(f"Schema training completed for {connection_id}")
        return record
