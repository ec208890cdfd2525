"""Tests for the job queue."""

import threading
import uuid

import pytest

from schema_trainer.exceptions import JobNotFoundError, PolicyError, ValidationError
from schema_trainer.schemas.job import JobOptions, JobType
from schema_trainer.services.notifications import job_channel, user_channel


def failing_handler(calls, exc=None):
    def handler(job, report_progress):
        calls.append(job.retry_count)
        raise exc or RuntimeError("boom")

    return handler


def test_enqueue_applies_type_policy(queue):
    """Test that enqueue stores the job type's default policy."""
    job_id = queue.enqueue(JobType.SCHEMA_REBUILD, {"connectionId": "c1"})
    job = queue.get_job(job_id)

    assert job.state == "created"
    assert job.retry_limit == 3
    assert job.retry_delay == 60
    assert job.retry_backoff is True
    assert job.expire_after_seconds == 24 * 3600
    assert job.retry_count == 0


def test_enqueue_options_override_policy(queue):
    """Test that per-enqueue options override the defaults."""
    job_id = queue.enqueue("data-export", {}, options=JobOptions(retry_limit=5, priority=7))
    job = queue.get_job(job_id)

    assert job.retry_limit == 5
    assert job.priority == 7
    assert job.retry_delay == 30


def test_enqueue_unknown_type_raises_policy_error(queue):
    """Test that unknown job types are rejected."""
    with pytest.raises(PolicyError):
        queue.enqueue("reindex-everything", {})


def test_enqueue_rejects_unserializable_payload(queue):
    """Test that payloads must be JSON objects."""
    with pytest.raises(ValidationError):
        queue.enqueue("data-export", {"when": object()})
    with pytest.raises(ValidationError):
        queue.enqueue("data-export", ["not", "an", "object"])


def test_enqueue_takes_user_from_payload(queue):
    """Test that the requesting user is read from the payload."""
    job_id = queue.enqueue("data-export", {"userId": "u1"})
    assert queue.get_job(job_id).user_id == "u1"


def test_singleton_key_returns_existing_job(queue):
    """Test idempotent enqueue while the first job is queued or active."""
    options = JobOptions(singleton_key="schema-rebuild:c1")
    first = queue.enqueue(JobType.SCHEMA_REBUILD, {"connectionId": "c1"}, options=options)
    second = queue.enqueue(JobType.SCHEMA_REBUILD, {"connectionId": "c1"}, options=options)
    assert first == second

    assert queue.claim(first) is not None
    third = queue.enqueue(JobType.SCHEMA_REBUILD, {"connectionId": "c1"}, options=options)
    assert third == first
    assert queue.get_stats().total == 1


def test_singleton_key_allows_new_job_after_terminal(queue):
    """Test that a finished job no longer blocks its key."""
    options = JobOptions(singleton_key="k")
    first = queue.enqueue("data-export", {}, options=options)
    queue.cancel(first)

    second = queue.enqueue("data-export", {}, options=options)
    assert second != first


def test_concurrent_claim_has_exactly_one_winner(queue):
    """Test that N concurrent claimers of one job produce one owner."""
    job_id = queue.enqueue("data-export", {})
    threads_count = 8
    barrier = threading.Barrier(threads_count)
    results = []
    lock = threading.Lock()

    def claim():
        barrier.wait()
        record = queue.claim(job_id)
        with lock:
            results.append(record)

    threads = [threading.Thread(target=claim) for _ in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    winners = [record for record in results if record is not None]
    assert len(results) == threads_count
    assert len(winners) == 1
    assert winners[0].state == "active"
    assert queue.get_job(job_id).state == "active"


def test_concurrent_claim_next_distributes_jobs(queue):
    """Test that racing pollers never claim the same job twice."""
    job_ids = {queue.enqueue("data-export", {"n": n}) for n in range(5)}
    threads_count = 10
    barrier = threading.Barrier(threads_count)
    claimed = []
    lock = threading.Lock()

    def poll():
        barrier.wait()
        record = queue.claim_next("data-export")
        if record is not None:
            with lock:
                claimed.append(record.id)

    threads = [threading.Thread(target=poll) for _ in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(claimed) == len(set(claimed))
    assert set(claimed) <= job_ids


def test_claim_respects_priority(queue):
    """Test that higher priority jobs are claimed first."""
    low = queue.enqueue("data-export", {}, options=JobOptions(priority=0))
    high = queue.enqueue("data-export", {}, options=JobOptions(priority=10))

    assert queue.claim_next("data-export").id == high
    assert queue.claim_next("data-export").id == low
    assert queue.claim_next("data-export") is None


def test_backoff_delays_double(queue, clock):
    """Test retry delays of 60, 120, 240 seconds and exhaustion after retry_limit attempts."""
    calls = []
    queue.register_worker("data-export", failing_handler(calls))
    job_id = queue.enqueue(
        "data-export",
        {},
        options=JobOptions(retry_limit=4, retry_delay=60, retry_backoff=True),
    )

    delays = []
    while True:
        record = queue.process_next("data-export")
        assert record is not None
        if record.state == "failed":
            break
        assert record.state == "retry"
        delay = (record.start_after - clock()).total_seconds()
        delays.append(delay)

        # Not due yet
        assert queue.process_next("data-export") is None
        clock.advance(delay)

    assert delays == [60, 120, 240]
    assert len(calls) == 4
    job = queue.get_job(job_id)
    assert job.retry_count == 4
    assert job.output == {"error": "boom"}


def test_default_policy_fails_after_exactly_three_attempts(queue, clock):
    """Test that schema-rebuild jobs fail after exactly three attempts."""
    calls = []
    queue.register_worker(JobType.SCHEMA_REBUILD, failing_handler(calls))
    job_id = queue.enqueue(JobType.SCHEMA_REBUILD, {})

    for _ in range(10):
        queue.process_next(JobType.SCHEMA_REBUILD)
        clock.advance(3600)

    assert calls == [0, 1, 2]
    assert queue.get_job(job_id).state == "failed"


def test_fixed_delay_without_backoff(queue, clock):
    """Test constant retry delay when backoff is disabled."""
    queue.register_worker("data-export", failing_handler([]))
    queue.enqueue("data-export", {}, options=JobOptions(retry_limit=3, retry_delay=30, retry_backoff=False))

    first = queue.process_next("data-export")
    assert (first.start_after - clock()).total_seconds() == 30
    clock.advance(30)
    second = queue.process_next("data-export")
    assert (second.start_after - clock()).total_seconds() == 30


def test_non_retryable_error_fails_immediately(queue):
    """Test that validation errors are never retried."""
    calls = []
    queue.register_worker("data-export", failing_handler(calls, ValidationError("bad payload")))
    job_id = queue.enqueue("data-export", {})

    record = queue.process_next("data-export")

    assert record.state == "failed"
    assert calls == [0]
    assert queue.get_job(job_id).output["error"] == "bad payload"


def test_handler_result_becomes_output(queue, hub):
    """Test completion and the lifecycle events published for it."""
    queue.register_worker("data-export", lambda job, report: {"rows": 3, "userId": job.user_id})
    subscription = hub.subscribe(user_channel("u1"))
    job_id = queue.enqueue("data-export", {}, user_id="u1")
    job_subscription = hub.subscribe(job_channel(job_id))

    record = queue.process_next("data-export")

    assert record.state == "completed"
    assert record.output == {"rows": 3, "userId": "u1"}
    events = subscription.drain()
    assert [event["event"] for event in events] == ["created", "started", "completed"]
    assert events[-1]["jobId"] == str(job_id)
    assert events[-1]["type"] == "data-export"
    assert events[-1]["result"] == {"rows": 3, "userId": "u1"}
    assert [event["event"] for event in job_subscription.drain()] == ["started", "completed"]


def test_failed_event_only_on_terminal_failure(queue, hub, clock):
    """Test that retries are silent and terminal failure publishes the error."""
    queue.register_worker("analytics-report", failing_handler([]))
    job_id = queue.enqueue("analytics-report", {}, options=JobOptions(retry_limit=2))
    subscription = hub.subscribe(job_channel(job_id))

    queue.process_next("analytics-report")
    clock.advance(60)
    queue.process_next("analytics-report")

    events = [event["event"] for event in subscription.drain()]
    assert events == ["started", "started", "failed"]


def test_progress_is_monotonic_within_attempt(queue, hub):
    """Test that a reported decrease is clamped to the previous percentage."""

    def handler(job, report_progress):
        for value in (10, 50, 30, 80, 150):
            report_progress(value, f"at {value}")
        return {}

    queue.register_worker("data-export", handler)
    job_id = queue.enqueue("data-export", {})
    subscription = hub.subscribe(job_channel(job_id))

    queue.process_next("data-export")

    percentages = [event["progress"]["percentage"] for event in subscription.drain() if event["event"] == "progress"]
    assert percentages == [10, 50, 50, 80, 100]
    assert percentages == sorted(percentages)


def test_progress_is_persisted_on_job(queue):
    """Test that the last progress report is readable by polling."""
    job_id = queue.enqueue("data-export", {})
    queue.claim(job_id)

    queue.report_progress(job_id, 42.0)

    assert queue.get_job(job_id).progress["percentage"] == 42.0


def test_expired_job_fails_with_timeout(queue, hub, clock):
    """Test that overdue jobs fail regardless of remaining retries."""
    job_id = queue.enqueue("analytics-report", {}, options=JobOptions(retry_limit=5, expire_after_seconds=60))
    subscription = hub.subscribe(job_channel(job_id))
    clock.advance(61)

    assert queue.process_next("analytics-report") is None

    job = queue.get_job(job_id)
    assert job.state == "failed"
    assert job.output["reason"] == "timeout"
    assert [event["event"] for event in subscription.drain()] == ["failed"]


def test_cancel_prevents_claim(queue, hub):
    """Test cancelling a queued job."""
    job_id = queue.enqueue("data-export", {})
    subscription = hub.subscribe(job_channel(job_id))

    record = queue.cancel(job_id)

    assert record.state == "cancelled"
    assert queue.claim(job_id) is None
    assert [event["event"] for event in subscription.drain()] == ["cancelled"]


def test_cancel_terminal_job_is_noop(queue, hub):
    """Test that cancelling a finished job changes nothing."""
    queue.register_worker("data-export", lambda job, report: {"ok": True})
    job_id = queue.enqueue("data-export", {})
    queue.process_next("data-export")
    subscription = hub.subscribe(job_channel(job_id))

    record = queue.cancel(job_id)

    assert record.state == "completed"
    assert subscription.drain() == []


def test_cancel_unknown_job_returns_none(queue):
    assert queue.cancel(uuid.uuid4()) is None


def test_cancel_while_active_discards_result(queue):
    """Test that a handler finishing after cancellation does not complete the job."""

    def handler(job, report_progress):
        queue.cancel(job.id)
        return {"late": True}

    queue.register_worker("data-export", handler)
    job_id = queue.enqueue("data-export", {})

    queue.process_next("data-export")

    job = queue.get_job(job_id)
    assert job.state == "cancelled"
    assert job.output is None


def test_retry_job_requeues_failed_payload(queue):
    """Test re-enqueueing a failed job."""
    queue.register_worker("data-export", failing_handler([], ValidationError("nope")))
    job_id = queue.enqueue("data-export", {"table": "users"}, user_id="u1")
    queue.process_next("data-export")

    new_id = queue.retry_job(job_id)

    new_job = queue.get_job(new_id)
    assert new_id != job_id
    assert new_job.state == "created"
    assert new_job.payload == {"table": "users"}
    assert new_job.user_id == "u1"


def test_retry_job_rejects_non_failed(queue):
    job_id = queue.enqueue("data-export", {})
    with pytest.raises(PolicyError):
        queue.retry_job(job_id)
    with pytest.raises(JobNotFoundError):
        queue.retry_job(uuid.uuid4())


def test_list_jobs_and_stats(queue):
    """Test filtering jobs and counting them by state."""
    first = queue.enqueue("data-export", {}, user_id="u1")
    queue.enqueue("bulk-import", {}, user_id="u2")
    queue.cancel(first)

    assert [job.id for job in queue.list_jobs(user_id="u1")] == [first]
    assert len(queue.list_jobs(job_type="bulk-import")) == 1
    assert len(queue.list_jobs(state="cancelled")) == 1

    stats = queue.get_stats()
    assert stats.total == 2
    assert stats.cancelled == 1
    assert stats.created == 1


def test_register_worker_twice_raises(queue):
    queue.register_worker("data-export", lambda job, report: None)
    with pytest.raises(PolicyError):
        queue.register_worker("data-export", lambda job, report: None)


def test_job_without_worker_fails_without_retry(queue):
    """Test that a claimed job with no registered handler fails terminally."""
    job_id = queue.enqueue("backup-connection", {})
    job = queue.claim(job_id)

    record = queue.execute(job)

    assert record.state == "failed"
    assert record.retry_count == 1


def test_expiry_covers_types_without_a_worker(queue, clock):
    """Test that polling any type expires overdue jobs of every type."""
    queue.register_worker("analytics-report", lambda job, report: {})
    job_id = queue.enqueue("data-export", {})
    clock.advance(13 * 3600)

    assert queue.process_next("analytics-report") is None

    job = queue.get_job(job_id)
    assert job.state == "failed"
    assert job.output == {"error": "Job expired after 43200 seconds", "reason": "timeout"}


def test_schema_rebuild_key_derived_from_payload(queue):
    """Test that schema-rebuild jobs for one connection collapse without an explicit key."""
    first = queue.enqueue(JobType.SCHEMA_REBUILD, {"connectionId": "c1"})
    second = queue.enqueue(JobType.SCHEMA_REBUILD, {"connectionId": "c1"})
    other = queue.enqueue(JobType.SCHEMA_REBUILD, {"connectionId": "c2"})

    assert first == second
    assert other != first
    assert queue.get_job(first).singleton_key == "schema-rebuild:c1"


def test_retry_job_keeps_singleton_key_and_policy(queue):
    """Test that a retried job cannot run beside an open job for the same key."""
    queue.register_worker(JobType.SCHEMA_REBUILD, failing_handler([], ValidationError("nope")))
    failed_id = queue.enqueue(
        JobType.SCHEMA_REBUILD, {"connectionId": "c1"}, options=JobOptions(retry_limit=5, priority=3)
    )
    queue.process_next(JobType.SCHEMA_REBUILD)
    assert queue.get_job(failed_id).state == "failed"

    open_id = queue.enqueue(JobType.SCHEMA_REBUILD, {"connectionId": "c1"})
    assert queue.retry_job(failed_id) == open_id

    queue.cancel(open_id)
    retried = queue.get_job(queue.retry_job(failed_id))
    assert retried.singleton_key == "schema-rebuild:c1"
    assert retried.retry_limit == 5
    assert retried.priority == 3

    assert queue.claim_next(JobType.SCHEMA_REBUILD).id == retried.id
    assert queue.claim_next(JobType.SCHEMA_REBUILD) is None
