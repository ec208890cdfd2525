"""Schema cache store: one status record and metadata document per connection."""

import logging
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from schema_trainer.exceptions import TrainingInProgressError, ValidationError
from schema_trainer.models.connection import DatabaseConnection
from schema_trainer.models.schema_cache import SchemaCache
from schema_trainer.models.types import utcnow
from schema_trainer.schemas.schema_data import SchemaCacheRecord

logger = logging.getLogger(__name__)

TRAINING_STATUSES = ("pending", "training", "completed", "failed")


class SchemaCacheStore:
    """Upsert-style persistence for ``connection_schema_cache``.

    ``completed`` is only reachable through ``upsert_document`` so a
    completed record always carries a document.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def get(self, connection_id: UUID) -> Optional[SchemaCacheRecord]:
        with self.session_factory() as db:
            row = self._find(db, connection_id)
            return SchemaCacheRecord.model_validate(row) if row else None

    def _find(self, db: Session, connection_id: UUID) -> Optional[SchemaCache]:
        return db.query(SchemaCache).filter(SchemaCache.connection_id == connection_id).first()

    def _ensure(self, db: Session, connection_id: UUID):
        """Insert a pending record if none exists; a concurrent insert is fine."""
        if self._find(db, connection_id) is not None:
            return
        now = self.clock()
        db.add(
            SchemaCache(
                id=uuid.uuid4(),
                connection_id=connection_id,
                training_status="pending",
                created_at=now,
                updated_at=now,
            )
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()

    def _update(self, connection_id: UUID, values: Dict[str, Any]) -> SchemaCacheRecord:
        with self.session_factory() as db:
            self._ensure(db, connection_id)
            db.execute(
                update(SchemaCache)
                .where(SchemaCache.connection_id == connection_id)
                .values(updated_at=self.clock(), **values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            row = self._find(db, connection_id)
            db.refresh(row)
            return SchemaCacheRecord.model_validate(row)

    def upsert_status(
        self,
        connection_id: UUID,
        status: str,
        started_at=None,
        error_message: Optional[str] = None,
    ) -> SchemaCacheRecord:
        """Set the training status; a prior document is kept for continuity.

        Raises:
            ValidationError: unknown status, or ``completed`` without a document
        """
        if status not in TRAINING_STATUSES:
            raise ValidationError(f"Unknown training status: {status}")
        if status == "completed":
            raise ValidationError("A completed status requires a schema document")

        values: Dict[str, Any] = {"training_status": status}
        if status == "training":
            values["training_started_at"] = started_at or self.clock()
            values["error_message"] = None
        elif status == "failed":
            values["error_message"] = error_message
        elif started_at is not None:
            values["training_started_at"] = started_at
        record = self._update(connection_id, values)
        logger.info(f"Schema cache {connection_id} -> {status}")
        return record

    def begin_training(
        self,
        connection_id: UUID,
        force: bool = False,
        stale_after_seconds: Optional[int] = None,
    ) -> SchemaCacheRecord:
        """Atomically move a record into ``training``.

        The transition is refused while another run is training, unless
        ``force`` is set or that run started more than ``stale_after_seconds``
        ago.

        Raises:
            TrainingInProgressError: another run holds the record
        """
        now = self.clock()
        with self.session_factory() as db:
            self._ensure(db, connection_id)
            conditions = [SchemaCache.connection_id == connection_id]
            if not force:
                allowed = [SchemaCache.training_status != "training"]
                if stale_after_seconds is not None:
                    allowed.append(SchemaCache.training_started_at.is_(None))
                    allowed.append(SchemaCache.training_started_at < now - timedelta(seconds=stale_after_seconds))
                conditions.append(or_(*allowed))

            result = db.execute(
                update(SchemaCache)
                .where(*conditions)
                .values(training_status="training", training_started_at=now, error_message=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                raise TrainingInProgressError()
            row = self._find(db, connection_id)
            db.refresh(row)
            return SchemaCacheRecord.model_validate(row)

    def upsert_document(
        self,
        connection_id: UUID,
        document: Optional[Dict[str, Any]],
        status: str = "completed",
        error_message: Optional[str] = None,
    ) -> SchemaCacheRecord:
        """Store a training outcome.

        ``completed`` requires a document, stamps ``last_trained_at`` and clears
        ``error_message``. ``failed`` records ``error_message`` and keeps the
        prior document when ``document`` is None.
        """
        if status == "completed":
            if document is None:
                raise ValidationError("A completed status requires a schema document")
            values = {
                "training_status": "completed",
                "schema_data": document,
                "last_trained_at": self.clock(),
                "error_message": None,
            }
        elif status == "failed":
            values = {"training_status": "failed", "error_message": error_message}
            if document is not None:
                values["schema_data"] = document
        else:
            raise ValidationError(f"Document status must be completed or failed, got {status}")

        record = self._update(connection_id, values)
        logger.info(f"Schema cache {connection_id} stored ({status})")
        return record

    def delete(self, connection_id: UUID) -> bool:
        with self.session_factory() as db:
            deleted = db.query(SchemaCache).filter(SchemaCache.connection_id == connection_id).delete()
            db.commit()
        if deleted:
            logger.info(f"Schema cache deleted for connection {connection_id}")
        return bool(deleted)

    def list_stale_connections(self, max_age_seconds: int) -> List[UUID]:
        """Active connections never trained or last trained before the cutoff."""
        cutoff = self.clock() - timedelta(seconds=max_age_seconds)
        with self.session_factory() as db:
            rows = (
                db.query(DatabaseConnection.id)
                .outerjoin(SchemaCache, SchemaCache.connection_id == DatabaseConnection.id)
                .filter(
                    DatabaseConnection.is_active.is_(True),
                    or_(SchemaCache.last_trained_at.is_(None), SchemaCache.last_trained_at < cutoff),
                )
                .order_by(DatabaseConnection.created_at)
                .all()
            )
        return [row.id for row in rows]
