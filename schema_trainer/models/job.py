"""Job model for the background queue."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import UUID

from schema_trainer.database import Base
from schema_trainer.models.types import JSONType, utcnow

# States a job can still be claimed from or is being worked in
QUEUED_STATES = ("created", "retry")
OPEN_STATES = ("created", "retry", "active")
TERMINAL_STATES = ("completed", "failed", "cancelled")

_OPEN_STATES_SQL = "state IN ('created', 'retry', 'active')"


class Job(Base):
    """Job represents one unit of typed work and its retry policy."""

    __tablename__ = "jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(Text, nullable=False)  # 'schema-rebuild', 'data-export', ...
    payload = Column(JSONType, nullable=False, default=dict)
    user_id = Column(Text)  # Requesting principal; null for system jobs
    state = Column(Text, nullable=False, default="created")  # see OPEN_STATES / TERMINAL_STATES

    priority = Column(Integer, nullable=False, default=0)
    retry_limit = Column(Integer, nullable=False, default=0)
    retry_delay = Column(Integer, nullable=False, default=0)  # seconds
    retry_backoff = Column(Boolean, nullable=False, default=False)
    expire_after_seconds = Column(Integer, nullable=False)
    singleton_key = Column(Text)
    retry_count = Column(Integer, nullable=False, default=0)

    progress = Column(JSONType)  # Last reported {current, total, percentage, message}
    output = Column(JSONType)  # Handler result, or {"error": ...} on failure

    start_after = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_jobs_type_state_start_after", "type", "state", "start_after"),
        Index("idx_jobs_user_id", "user_id"),
        Index(
            "uq_jobs_singleton_key_open",
            "singleton_key",
            unique=True,
            postgresql_where=text(_OPEN_STATES_SQL),
            sqlite_where=text(_OPEN_STATES_SQL),
        ),
    )
