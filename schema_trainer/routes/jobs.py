"""Job routes."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from schema_trainer.exceptions import JobNotFoundError
from schema_trainer.models.job import TERMINAL_STATES
from schema_trainer.routes.dependencies import get_heartbeat, get_hub, get_queue
from schema_trainer.routes.events import event_stream, sse_response
from schema_trainer.schemas.job import (
    CreateJobRequest,
    CreateJobResponse,
    JobEvent,
    JobListResponse,
    JobRecord,
    JobState,
    JobStats,
)
from schema_trainer.services.job_queue import JobQueue
from schema_trainer.services.notifications import NotificationHub, job_channel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=CreateJobResponse, status_code=201)
def create_job(data: CreateJobRequest, queue: JobQueue = Depends(get_queue)):
    """Enqueue a job of any registered type."""
    job_id = queue.enqueue(data.type, data.payload, user_id=data.user_id, options=data.options)
    return CreateJobResponse(job_id=job_id)


@router.get("", response_model=JobListResponse)
def list_jobs(
    user_id: Optional[str] = None,
    type: Optional[str] = None,
    state: Optional[JobState] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    queue: JobQueue = Depends(get_queue),
):
    """List jobs, newest first."""
    jobs = queue.list_jobs(user_id=user_id, job_type=type, state=state.value if state else None, limit=limit, offset=offset)
    return JobListResponse(jobs=jobs, limit=limit, offset=offset)


@router.get("/stats", response_model=JobStats)
def get_stats(queue: JobQueue = Depends(get_queue)):
    return queue.get_stats()


@router.get("/{job_id}", response_model=JobRecord)
def get_job(job_id: uuid.UUID, queue: JobQueue = Depends(get_queue)):
    job = queue.get_job(job_id)
    if job is None:
        raise JobNotFoundError(f"Job {job_id} not found")
    return job


@router.post("/{job_id}/cancel", response_model=JobRecord)
def cancel_job(job_id: uuid.UUID, queue: JobQueue = Depends(get_queue)):
    """Cancel a queued or active job; cancelling a finished job changes nothing."""
    job = queue.cancel(job_id)
    if job is None:
        raise JobNotFoundError(f"Job {job_id} not found")
    return job


@router.post("/{job_id}/retry", response_model=CreateJobResponse, status_code=201)
def retry_job(job_id: uuid.UUID, queue: JobQueue = Depends(get_queue)):
    """Re-enqueue the payload of a failed job as a new job."""
    return CreateJobResponse(job_id=queue.retry_job(job_id))


@router.get("/{job_id}/events")
async def stream_job_events(
    job_id: uuid.UUID,
    request: Request,
    queue: JobQueue = Depends(get_queue),
    hub: NotificationHub = Depends(get_hub),
    heartbeat: float = Depends(get_heartbeat),
):
    """Stream one job's events until it reaches a terminal state.

    The first frame reflects the job's current state so late subscribers
    see where it is.
    """
    subscription = hub.subscribe_async(job_channel(job_id))
    job = await run_in_threadpool(queue.get_job, job_id)
    if job is None:
        subscription.close()
        raise JobNotFoundError(f"Job {job_id} not found")

    event = job.state if job.state in TERMINAL_STATES else ("started" if job.state == "active" else "created")
    snapshot = JobEvent(
        job_id=job.id,
        type=job.type,
        event=event,
        user_id=job.user_id,
        result=job.output if job.state == "completed" else None,
        error=(job.output or {}).get("error") if job.state == "failed" else None,
        timestamp=job.completed_at or job.started_at or job.created_at,
    ).to_frame()
    return sse_response(event_stream(subscription, heartbeat, initial=snapshot, close_on_terminal=True, request=request))
