"""SQLAlchemy ORM models."""

from schema_trainer.models.connection import DatabaseConnection
from schema_trainer.models.job import Job
from schema_trainer.models.schema_cache import SchemaCache

__all__ = [
    "DatabaseConnection",
    "Job",
    "SchemaCache",
]
