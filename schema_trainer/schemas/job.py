"""Job-related Pydantic schemas and per-type policy."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobType(str, Enum):
    """Closed set of job types the queue accepts."""

    SCHEMA_REBUILD = "schema-rebuild"
    DATA_EXPORT = "data-export"
    BULK_IMPORT = "bulk-import"
    ANALYTICS_REPORT = "analytics-report"
    BACKUP_CONNECTION = "backup-connection"


class JobState(str, Enum):
    CREATED = "created"
    RETRY = "retry"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobEventType(str, Enum):
    """Lifecycle events published for every job. Values are part of the wire contract."""

    CREATED = "created"
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobPolicy(BaseModel):
    """Retry, backoff and expiry policy applied to a job."""

    priority: int = 0
    retry_limit: int = 0
    retry_delay: int = 0  # seconds
    retry_backoff: bool = False
    expire_after_seconds: int = 3600
    singleton_key: Optional[str] = None
    # Payload field whose value keys at most one open job of this type
    singleton_field: Optional[str] = None

    def next_delay(self, retry_count: int) -> int:
        """Seconds to wait before the attempt following ``retry_count`` failures."""
        if self.retry_backoff:
            return self.retry_delay * (2 ** retry_count)
        return self.retry_delay


JOB_POLICIES: Dict[JobType, JobPolicy] = {
    JobType.SCHEMA_REBUILD: JobPolicy(
        retry_limit=3,
        retry_delay=60,
        retry_backoff=True,  # 1min, 2min, 4min
        expire_after_seconds=24 * 3600,
        singleton_field="connectionId",
    ),
    JobType.DATA_EXPORT: JobPolicy(
        retry_limit=2,
        retry_delay=30,
        retry_backoff=True,
        expire_after_seconds=12 * 3600,
    ),
    JobType.BULK_IMPORT: JobPolicy(
        retry_limit=2,
        retry_delay=30,
        retry_backoff=True,
        expire_after_seconds=12 * 3600,
    ),
    JobType.ANALYTICS_REPORT: JobPolicy(
        retry_limit=1,
        retry_delay=60,
        retry_backoff=False,
        expire_after_seconds=6 * 3600,
    ),
    JobType.BACKUP_CONNECTION: JobPolicy(
        retry_limit=3,
        retry_delay=120,
        retry_backoff=True,
        expire_after_seconds=24 * 3600,
    ),
}


class JobOptions(BaseModel):
    """Per-enqueue overrides of a job type's default policy."""

    priority: Optional[int] = None
    retry_limit: Optional[int] = Field(default=None, ge=0)
    retry_delay: Optional[int] = Field(default=None, ge=0)
    retry_backoff: Optional[bool] = None
    expire_after_seconds: Optional[int] = Field(default=None, gt=0)
    singleton_key: Optional[str] = None
    start_after: Optional[datetime] = None


class JobProgress(BaseModel):
    """Progress reported by a running handler."""

    current: Optional[int] = None
    total: Optional[int] = None
    percentage: float
    message: Optional[str] = None


class JobRecord(BaseModel):
    """Detached snapshot of a job row, handed to handlers and returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    payload: Dict[str, Any]
    user_id: Optional[str] = None
    state: str
    priority: int
    retry_limit: int
    retry_delay: int
    retry_backoff: bool
    expire_after_seconds: int
    singleton_key: Optional[str] = None
    retry_count: int
    progress: Optional[Dict[str, Any]] = None
    output: Optional[Any] = None
    start_after: datetime
    expires_at: datetime
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobEvent(BaseModel):
    """Lifecycle frame published to notification channels.

    Serialized with camelCase aliases (``jobId``, ``userId``); field names
    and event values are what the frontend consumes.
    """

    model_config = ConfigDict(populate_by_name=True)

    job_id: UUID = Field(alias="jobId")
    type: str
    event: JobEventType
    user_id: Optional[str] = Field(default=None, alias="userId")
    progress: Optional[JobProgress] = None
    result: Optional[Any] = None
    error: Optional[str] = None
    timestamp: datetime

    def to_frame(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CreateJobRequest(BaseModel):
    type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    options: Optional[JobOptions] = None


class CreateJobResponse(BaseModel):
    job_id: UUID


class JobListResponse(BaseModel):
    jobs: List[JobRecord]
    limit: int
    offset: int


class JobStats(BaseModel):
    """Job counts by state."""

    total: int = 0
    created: int = 0
    retry: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
