"""Durable typed job queue backed by the service database.

Jobs are rows in ``jobs``. Every state change is a single conditional
UPDATE (compare-and-swap on ``state``), so any number of worker threads
or processes can poll the same table and a job is owned by at most one
executor at a time.

Lifecycle::

    created -> active -> completed
                      -> retry -> active ...   (while retries remain)
                      -> failed                (retries exhausted, non-retryable error, expired)
    created|retry|active -> cancelled
"""

import json
import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from schema_trainer.exceptions import JobNotFoundError, JobTimeoutError, PolicyError, ValidationError
from schema_trainer.models.job import OPEN_STATES, QUEUED_STATES, TERMINAL_STATES, Job
from schema_trainer.models.types import utcnow
from schema_trainer.schemas.job import (
    JOB_POLICIES,
    JobEvent,
    JobEventType,
    JobOptions,
    JobPolicy,
    JobProgress,
    JobRecord,
    JobStats,
    JobType,
)
from schema_trainer.services.notifications import NotificationHub, job_channel, user_channel

logger = logging.getLogger(__name__)

# Candidates fetched per claim attempt; losers of a race move on to the next row
CLAIM_BATCH_SIZE = 5


class ProgressReporter:
    """Progress callback handed to a handler for one attempt.

    Percentages are clamped to [0, 100] and never decrease within the
    attempt, so observers see a monotonic sequence.
    """

    def __init__(self, queue: "JobQueue", job_id: uuid.UUID):
        self.queue = queue
        self.job_id = job_id
        self.last_percentage = 0.0

    def __call__(
        self,
        percentage: float,
        message: Optional[str] = None,
        current: Optional[int] = None,
        total: Optional[int] = None,
    ):
        percentage = min(100.0, max(0.0, float(percentage)))
        percentage = max(percentage, self.last_percentage)
        self.last_percentage = percentage
        self.queue.report_progress(
            self.job_id,
            JobProgress(current=current, total=total, percentage=round(percentage, 2), message=message),
        )


Handler = Callable[[JobRecord, ProgressReporter], Any]


def error_message(exc: BaseException) -> str:
    """Human-readable message stored on a failed job."""
    message = getattr(exc, "message", None) or str(exc)
    return message or exc.__class__.__name__


class JobQueue:
    """Typed work queue with per-type retry, backoff and expiry policy."""

    def __init__(
        self,
        session_factory: sessionmaker,
        hub: Optional[NotificationHub] = None,
        policies: Optional[Dict[JobType, JobPolicy]] = None,
        clock: Callable = utcnow,
        default_concurrency: int = 3,
        default_poll_interval: float = 2.0,
    ):
        self.session_factory = session_factory
        self.hub = hub
        self.policies = dict(policies or JOB_POLICIES)
        self.clock = clock
        self.default_concurrency = default_concurrency
        self.default_poll_interval = default_poll_interval
        self._handlers: Dict[str, Handler] = {}
        self._pools: Dict[str, Any] = {}
        self.started = False

    # ---- enqueue ------------------------------------------------------------

    def resolve_type(self, job_type: Union[str, JobType]) -> JobType:
        try:
            resolved = JobType(job_type)
        except ValueError:
            raise PolicyError(f"Unknown job type: {job_type}")
        if resolved not in self.policies:
            raise PolicyError(f"No policy configured for job type: {resolved.value}")
        return resolved

    def policy_for(self, job_type: JobType, options: Optional[JobOptions] = None) -> JobPolicy:
        """Default policy for ``job_type`` with non-null ``options`` applied on top."""
        policy = self.policies[job_type]
        if options is None:
            return policy
        overrides = options.model_dump(exclude_none=True, exclude={"start_after"})
        return policy.model_copy(update=overrides)

    def enqueue(
        self,
        job_type: Union[str, JobType],
        payload: Dict[str, Any],
        user_id: Optional[str] = None,
        options: Optional[JobOptions] = None,
    ) -> uuid.UUID:
        """Queue a job and return its id.

        With a ``singleton_key``, enqueueing while another job with the same
        key is queued or active returns that job's id instead. Types whose
        policy names a ``singleton_field`` derive the key from that payload
        field when none is given.

        Raises:
            PolicyError: unknown job type
            ValidationError: payload is not a JSON object
        """
        job_type = self.resolve_type(job_type)
        if not isinstance(payload, dict):
            raise ValidationError("Job payload must be a JSON object")
        try:
            payload = json.loads(json.dumps(payload))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Job payload is not serializable: {e}")

        policy = self.policy_for(job_type, options)
        if policy.singleton_key is None and policy.singleton_field and payload.get(policy.singleton_field):
            policy = policy.model_copy(
                update={"singleton_key": f"{job_type.value}:{payload[policy.singleton_field]}"}
            )
        user_id = user_id or payload.get("userId") or payload.get("user_id")
        now = self.clock()
        start_after = options.start_after if options and options.start_after else now

        with self.session_factory() as db:
            if policy.singleton_key:
                existing = self._find_open_singleton(db, policy.singleton_key)
                if existing is not None:
                    logger.info(f"Job {existing.id} already queued for key {policy.singleton_key}")
                    return existing.id

            job = Job(
                id=uuid.uuid4(),
                type=job_type.value,
                payload=payload,
                user_id=str(user_id) if user_id else None,
                state="created",
                priority=policy.priority,
                retry_limit=policy.retry_limit,
                retry_delay=policy.retry_delay,
                retry_backoff=policy.retry_backoff,
                expire_after_seconds=policy.expire_after_seconds,
                singleton_key=policy.singleton_key,
                retry_count=0,
                start_after=start_after,
                expires_at=now + timedelta(seconds=policy.expire_after_seconds),
                created_at=now,
            )
            db.add(job)
            try:
                db.commit()
            except IntegrityError:
                # Lost an enqueue race on the singleton index
                db.rollback()
                existing = self._find_open_singleton(db, policy.singleton_key) if policy.singleton_key else None
                if existing is None:
                    raise
                logger.info(f"Job {existing.id} already queued for key {policy.singleton_key}")
                return existing.id

            record = JobRecord.model_validate(job)

        logger.info(f"Job created: {record.id} (type: {record.type})")
        self._emit(record, JobEventType.CREATED)
        return record.id

    def _find_open_singleton(self, db: Session, singleton_key: str) -> Optional[Job]:
        return (
            db.query(Job)
            .filter(Job.singleton_key == singleton_key, Job.state.in_(OPEN_STATES))
            .order_by(Job.created_at)
            .first()
        )

    # ---- claim --------------------------------------------------------------

    def _try_claim(self, db: Session, job_id: uuid.UUID, now) -> bool:
        result = db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.state.in_(QUEUED_STATES),
                Job.start_after <= now,
                Job.expires_at > now,
            )
            .values(state="active", started_at=now, progress=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def claim(self, job_id: uuid.UUID) -> Optional[JobRecord]:
        """Claim a specific due job. Returns None if another executor owns it."""
        now = self.clock()
        with self.session_factory() as db:
            if not self._try_claim(db, job_id, now):
                return None
            record = JobRecord.model_validate(db.get(Job, job_id, populate_existing=True))
        self._on_claimed(record)
        return record

    def claim_next(self, job_type: Union[str, JobType]) -> Optional[JobRecord]:
        """Claim the highest-priority due job of ``job_type``, if any."""
        job_type = self.resolve_type(job_type)
        now = self.clock()
        with self.session_factory() as db:
            candidates = (
                db.query(Job.id)
                .filter(
                    Job.type == job_type.value,
                    Job.state.in_(QUEUED_STATES),
                    Job.start_after <= now,
                    Job.expires_at > now,
                )
                .order_by(Job.priority.desc(), Job.created_at)
                .limit(CLAIM_BATCH_SIZE)
                .with_for_update(skip_locked=True)
                .all()
            )
            for (job_id,) in candidates:
                if self._try_claim(db, job_id, now):
                    record = JobRecord.model_validate(db.get(Job, job_id, populate_existing=True))
                    break
            else:
                db.commit()  # release row locks taken by the scan
                return None
        self._on_claimed(record)
        return record

    def _on_claimed(self, record: JobRecord):
        logger.info(f"Processing job {record.id} (type: {record.type}, attempt {record.retry_count + 1})")
        self._emit(record, JobEventType.STARTED)

    # ---- execution ----------------------------------------------------------

    def register_worker(
        self,
        job_type: Union[str, JobType],
        handler: Handler,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        """Register ``handler`` for ``job_type`` with a bounded pool of executors.

        The handler receives the claimed job and a progress reporter. Its
        return value becomes the job output; raising triggers the retry policy.
        """
        from schema_trainer.worker import WorkerPool

        job_type = self.resolve_type(job_type)
        if job_type.value in self._pools:
            raise PolicyError(f"Worker already registered for job type: {job_type.value}")

        self._handlers[job_type.value] = handler
        pool = WorkerPool(
            self,
            job_type.value,
            concurrency=concurrency or self.default_concurrency,
            poll_interval=poll_interval if poll_interval is not None else self.default_poll_interval,
        )
        self._pools[job_type.value] = pool
        logger.info(f"Worker registered for job type: {job_type.value} (teamSize: {pool.concurrency})")
        if self.started:
            pool.start()

    def execute(self, job: JobRecord) -> Optional[JobRecord]:
        """Run the registered handler for a claimed job and record the outcome."""
        handler = self._handlers.get(job.type)
        reporter = ProgressReporter(self, job.id)
        try:
            if handler is None:
                raise PolicyError(f"No worker registered for job type: {job.type}")
            result = handler(job, reporter)
        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}", exc_info=True)
            return self._fail(job, e)
        return self._complete(job, result)

    def process_next(self, job_type: Union[str, JobType]) -> Optional[JobRecord]:
        """Expire overdue jobs of every type, then claim and execute one due job.

        Sweeping every type keeps jobs without a registered worker from
        outliving their expiry.

        Returns the job's record after execution, or None when nothing was due.
        """
        self.expire_overdue()
        job = self.claim_next(job_type)
        if job is None:
            return None
        return self.execute(job)

    def _complete(self, job: JobRecord, result: Any) -> Optional[JobRecord]:
        now = self.clock()
        output = jsonable_encoder(result)
        with self.session_factory() as db:
            updated = db.execute(
                update(Job)
                .where(Job.id == job.id, Job.state == "active")
                .values(state="completed", output=output, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            row = db.get(Job, job.id, populate_existing=True)
            record = JobRecord.model_validate(row) if row else None

        if updated.rowcount != 1:
            logger.warning(
                f"Job {job.id} finished after leaving active state ({record.state if record else 'deleted'}); "
                "result discarded"
            )
            return record

        logger.info(f"Job {job.id} completed successfully")
        self._emit(record, JobEventType.COMPLETED, result=output)
        return record

    def _fail(self, job: JobRecord, exc: BaseException) -> Optional[JobRecord]:
        now = self.clock()
        message = error_message(exc)
        retryable = getattr(exc, "retryable", True)
        attempts = job.retry_count + 1

        with self.session_factory() as db:
            if retryable and attempts < job.retry_limit:
                policy = JobPolicy(retry_delay=job.retry_delay, retry_backoff=job.retry_backoff)
                delay = policy.next_delay(job.retry_count)
                values = dict(
                    state="retry",
                    retry_count=attempts,
                    start_after=now + timedelta(seconds=delay),
                    output={"error": message},
                    updated_at=now,
                )
            else:
                delay = None
                values = dict(
                    state="failed",
                    retry_count=attempts,
                    output={"error": message},
                    completed_at=now,
                    updated_at=now,
                )
            updated = db.execute(
                update(Job)
                .where(Job.id == job.id, Job.state == "active")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            row = db.get(Job, job.id, populate_existing=True)
            record = JobRecord.model_validate(row) if row else None

        if updated.rowcount != 1:
            logger.warning(f"Job {job.id} failed after leaving active state; failure not recorded")
            return record

        if delay is not None:
            logger.warning(f"Job {job.id} retry {attempts}/{job.retry_limit} in {delay}s")
        else:
            logger.error(f"Job {job.id} failed after {attempts} attempt(s): {message}")
            self._emit(record, JobEventType.FAILED, error=message)
        return record

    def expire_overdue(self, job_type: Union[str, JobType, None] = None) -> int:
        """Fail every open job whose expiry has passed, regardless of retries left."""
        now = self.clock()
        expired: List[JobRecord] = []
        with self.session_factory() as db:
            query = db.query(Job.id).filter(Job.state.in_(OPEN_STATES), Job.expires_at <= now)
            if job_type is not None:
                query = query.filter(Job.type == self.resolve_type(job_type).value)
            for (job_id,) in query.all():
                row = db.get(Job, job_id)
                error = JobTimeoutError(f"Job expired after {row.expire_after_seconds} seconds")
                updated = db.execute(
                    update(Job)
                    .where(Job.id == job_id, Job.state.in_(OPEN_STATES))
                    .values(state="failed", output={"error": error.message, "reason": "timeout"}, completed_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                if updated.rowcount == 1:
                    expired.append(JobRecord.model_validate(db.get(Job, job_id, populate_existing=True)))

        for record in expired:
            logger.error(f"Job {record.id} expired")
            self._emit(record, JobEventType.FAILED, error=record.output["error"])
        return len(expired)

    # ---- progress -----------------------------------------------------------

    def report_progress(self, job_id: uuid.UUID, progress: Union[JobProgress, float]):
        """Persist the latest progress on an active job and publish it."""
        if not isinstance(progress, JobProgress):
            progress = JobProgress(percentage=float(progress))
        now = self.clock()
        with self.session_factory() as db:
            updated = db.execute(
                update(Job)
                .where(Job.id == job_id, Job.state == "active")
                .values(progress=progress.model_dump(exclude_none=True), updated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if updated.rowcount != 1:
                return
            record = JobRecord.model_validate(db.get(Job, job_id, populate_existing=True))

        logger.debug(f"Job {job_id} progress: {progress.percentage}%")
        self._emit(record, JobEventType.PROGRESS, progress=progress)

    # ---- inspection and control -------------------------------------------

    def get_job(self, job_id: uuid.UUID) -> Optional[JobRecord]:
        with self.session_factory() as db:
            job = db.get(Job, job_id)
            return JobRecord.model_validate(job) if job else None

    def cancel(self, job_id: uuid.UUID) -> Optional[JobRecord]:
        """Cancel a queued or active job.

        Cancelling only prevents future claims and retries; a handler that is
        already running finishes and its result is discarded. Cancelling a
        terminal job is a no-op. Returns None if the job does not exist.
        """
        now = self.clock()
        with self.session_factory() as db:
            updated = db.execute(
                update(Job)
                .where(Job.id == job_id, Job.state.in_(OPEN_STATES))
                .values(state="cancelled", completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            job = db.get(Job, job_id, populate_existing=True)
            if job is None:
                return None
            record = JobRecord.model_validate(job)

        if updated.rowcount == 1:
            logger.info(f"Job cancelled: {job_id}")
            self._emit(record, JobEventType.CANCELLED)
        return record

    def retry_job(self, job_id: uuid.UUID) -> uuid.UUID:
        """Queue a fresh job with the payload and stored policy of a failed one.

        The singleton key carries over, so a retry collapses into a job
        already open for the same key.
        """
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if job.state != "failed":
            raise PolicyError("Only failed jobs can be retried")

        options = JobOptions(
            priority=job.priority,
            retry_limit=job.retry_limit,
            retry_delay=job.retry_delay,
            retry_backoff=job.retry_backoff,
            expire_after_seconds=job.expire_after_seconds,
            singleton_key=job.singleton_key,
        )
        new_job_id = self.enqueue(job.type, job.payload, user_id=job.user_id, options=options)
        logger.info(f"Job retried: {job_id} -> {new_job_id}")
        return new_job_id

    def list_jobs(
        self,
        user_id: Optional[str] = None,
        job_type: Optional[str] = None,
        state: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[JobRecord]:
        with self.session_factory() as db:
            query = db.query(Job)
            if user_id:
                query = query.filter(Job.user_id == user_id)
            if job_type:
                query = query.filter(Job.type == job_type)
            if state:
                query = query.filter(Job.state == state)
            jobs = query.order_by(Job.created_at.desc()).offset(offset).limit(limit).all()
            return [JobRecord.model_validate(job) for job in jobs]

    def get_stats(self) -> JobStats:
        with self.session_factory() as db:
            counts = dict(db.query(Job.state, func.count(Job.id)).group_by(Job.state).all())
        stats = JobStats(**{state: counts.get(state, 0) for state in (*OPEN_STATES, *TERMINAL_STATES)})
        stats.total = sum(counts.values())
        return stats

    # ---- lifecycle ----------------------------------------------------------

    def start(self):
        """Start every registered worker pool."""
        if self.started:
            return
        self.started = True
        for pool in self._pools.values():
            pool.start()
        logger.info(f"Job queue started ({len(self._pools)} worker pool(s))")

    def stop(self, graceful: bool = True, timeout: float = 30.0) -> bool:
        """Stop claiming new jobs and, if ``graceful``, wait for in-flight jobs.

        Returns True when every pool drained within ``timeout``.
        """
        if not self.started:
            return True
        self.started = False
        for pool in self._pools.values():
            pool.stop_claiming()

        drained = True
        if graceful:
            deadline = time.monotonic() + timeout
            for pool in self._pools.values():
                remaining = max(0.0, deadline - time.monotonic())
                drained = pool.wait_drained(remaining) and drained

        for pool in self._pools.values():
            pool.join(timeout=1.0)

        if drained:
            logger.info("Job queue stopped")
        else:
            logger.warning("Job queue stopped with jobs still in flight")
        return drained

    # ---- events -------------------------------------------------------------

    def _emit(
        self,
        job: JobRecord,
        event: JobEventType,
        progress: Optional[JobProgress] = None,
        result: Any = None,
        error: Optional[str] = None,
    ):
        if self.hub is None:
            return
        frame = JobEvent(
            job_id=job.id,
            type=job.type,
            event=event,
            user_id=job.user_id,
            progress=progress,
            result=result,
            error=error,
            timestamp=self.clock(),
        ).to_frame()

        self.hub.publish(job_channel(job.id), frame)
        if job.user_id:
            self.hub.publish(user_channel(job.user_id), frame)
