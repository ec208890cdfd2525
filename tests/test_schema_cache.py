"""Tests for the schema cache store."""

import uuid

import pytest

from schema_trainer.exceptions import TrainingInProgressError, ValidationError

DAY = 24 * 3600
DOCUMENT = {"schemas": [], "total_tables": 0, "total_columns": 0, "database_type": "sqlite"}


def test_get_missing_returns_none(cache_store):
    assert cache_store.get(uuid.uuid4()) is None


def test_list_stale_connections(cache_store, make_connection, clock):
    """Test null, 8-day-old and 1-hour-old training against a 7 day window."""
    never_trained = make_connection()
    old = make_connection()
    fresh = make_connection()
    inactive = make_connection(is_active=False)
    pending = make_connection()

    cache_store.upsert_document(old, DOCUMENT)
    clock.advance(8 * DAY - 3600)
    cache_store.upsert_document(fresh, DOCUMENT)
    cache_store.upsert_status(pending, "pending")
    clock.advance(3600)

    stale = cache_store.list_stale_connections(max_age_seconds=7 * DAY)

    assert set(stale) == {never_trained, old, pending}
    assert fresh not in stale
    assert inactive not in stale


def test_completed_document_clears_error(cache_store, make_connection, clock):
    connection_id = make_connection()
    cache_store.upsert_document(connection_id, None, status="failed", error_message="unreachable")

    record = cache_store.upsert_document(connection_id, DOCUMENT)

    assert record.training_status == "completed"
    assert record.error_message is None
    assert record.schema_data == DOCUMENT
    assert record.last_trained_at == clock()


def test_failure_keeps_previous_document(cache_store, make_connection):
    """Test that a failed run leaves the last good document in place."""
    connection_id = make_connection()
    cache_store.upsert_document(connection_id, DOCUMENT)

    record = cache_store.upsert_document(connection_id, None, status="failed", error_message="boom")

    assert record.training_status == "failed"
    assert record.error_message == "boom"
    assert record.schema_data == DOCUMENT


def test_completed_requires_document(cache_store, make_connection):
    connection_id = make_connection()
    with pytest.raises(ValidationError):
        cache_store.upsert_status(connection_id, "completed")
    with pytest.raises(ValidationError):
        cache_store.upsert_document(connection_id, None, status="completed")
    with pytest.raises(ValidationError):
        cache_store.upsert_status(connection_id, "exploded")


def test_begin_training_is_exclusive(cache_store, make_connection, clock):
    """Test that a second run is refused until forced or the first goes stale."""
    connection_id = make_connection()
    record = cache_store.begin_training(connection_id)
    assert record.training_status == "training"
    assert record.training_started_at == clock()

    with pytest.raises(TrainingInProgressError):
        cache_store.begin_training(connection_id, stale_after_seconds=7200)

    assert cache_store.begin_training(connection_id, force=True).training_status == "training"

    clock.advance(7201)
    assert cache_store.begin_training(connection_id, stale_after_seconds=7200).training_started_at == clock()


def test_delete(cache_store, make_connection):
    connection_id = make_connection()
    cache_store.upsert_status(connection_id, "pending")

    assert cache_store.delete(connection_id) is True
    assert cache_store.delete(connection_id) is False
    assert cache_store.get(connection_id) is None
