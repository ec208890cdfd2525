"""Database connection model.

Rows are owned by the connection CRUD layer; this service only reads them.
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import UUID

from schema_trainer.database import Base
from schema_trainer.models.types import utcnow


class DatabaseConnection(Base):
    """A saved target database the schema can be trained from."""

    __tablename__ = "database_connections"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    db_type = Column(Text, nullable=False)  # 'mysql', 'postgresql', 'sqlite', 'supabase'
    host = Column(Text)
    port = Column(Integer)
    database = Column(Text)  # Database name, or file path for sqlite
    username = Column(Text)
    password = Column(Text)
    ssl = Column(Boolean, default=False)
    connection_string = Column(Text)  # Overrides the discrete fields when set
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
