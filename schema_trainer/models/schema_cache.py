"""Schema cache model: one trained metadata document per connection."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlalchemy.dialects.postgresql import UUID

from schema_trainer.database import Base
from schema_trainer.models.types import JSONType, utcnow


class SchemaCache(Base):
    """Training status and cached schema document for a connection."""

    __tablename__ = "connection_schema_cache"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    connection_id = Column(
        UUID(as_uuid=True),
        ForeignKey("database_connections.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    schema_data = Column(JSONType)
    training_status = Column(Text, nullable=False, default="pending")  # 'pending', 'training', 'completed', 'failed'
    training_started_at = Column(DateTime)
    last_trained_at = Column(DateTime)
    error_message = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_schema_cache_training_status", "training_status"),
        Index("idx_schema_cache_last_trained_at", "last_trained_at"),
    )
