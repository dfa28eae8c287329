"""Tests for the enrichment and audit-log workers."""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

import tasks
from classifier import ReviewClassifier
from errors import DependencyError, JobExhaustedError
from models import AccessLog, ReviewHistory
from queues import AUDITLOG_QUEUE, ENRICHMENT_QUEUE
from schemas import EnrichmentJob, LogJob, ToneSentiment


@pytest.fixture
def offline_classifier():
    return ReviewClassifier(None, "test-model")


@pytest.fixture
def worker_env(session_factory, offline_classifier):
    """Point the task bodies at the test database and an offline classifier."""
    with patch.object(tasks, "SessionLocal", session_factory), \
            patch.object(tasks, "get_classifier", return_value=offline_classifier), \
            patch.object(tasks, "log_message", return_value=True) as log, \
            patch.object(tasks, "dead_letter") as dead_letter:
        yield SimpleNamespace(log_message=log, dead_letter=dead_letter)


def fake_task(retries, task_id="task-1"):
    return SimpleNamespace(
        request=SimpleNamespace(retries=retries, id=task_id),
        retry=MagicMock(return_value=RuntimeError("retry scheduled")),
    )


def test_enrich_review_writes_labels(db, session_factory, offline_classifier, make_category, add_review):
    review = add_review(make_category("Electronics"), "REV002", 8)
    job = EnrichmentJob(record_id=review.id, text=review.text, stars=review.stars)

    result = tasks.enrich_review(job, session_factory, offline_classifier)

    assert result == ToneSentiment(tone="positive", sentiment="satisfied")
    db.expire_all()
    stored = db.get(ReviewHistory, review.id)
    assert (stored.tone, stored.sentiment) == ("positive", "satisfied")


def test_duplicate_delivery_leaves_same_state(db, session_factory, offline_classifier,
                                              make_category, add_review):
    review = add_review(make_category("Books"), "REV005", 5)
    job = EnrichmentJob(record_id=review.id, text=review.text, stars=review.stars)

    tasks.enrich_review(job, session_factory, offline_classifier)
    db.expire_all()
    once = db.get(ReviewHistory, review.id)
    snapshot = (once.tone, once.sentiment, once.updated_at)

    tasks.enrich_review(job, session_factory, offline_classifier)
    db.expire_all()
    twice = db.get(ReviewHistory, review.id)
    assert (twice.tone, twice.sentiment, twice.updated_at) == snapshot


def test_persist_log_entry(db, session_factory):
    entry_id = tasks.persist_log_entry(LogJob(message="GET /reviews - now"), session_factory)
    entry = db.get(AccessLog, entry_id)
    assert entry.text == "GET /reviews - now"


def test_process_review_success(db, worker_env, make_category, add_review):
    review = add_review(make_category("Sports"), "REV014", 3)
    payload = EnrichmentJob(record_id=review.id, text=review.text, stars=3).model_dump()

    result = tasks.process_review(payload)

    assert result == {"tone": "negative", "sentiment": "disappointed"}
    message = worker_env.log_message.call_args.args[0]
    assert message.startswith(f"Enriched review {review.id}")
    worker_env.dead_letter.assert_not_called()


def test_process_review_rejects_malformed_payload(worker_env):
    assert tasks.process_review({"kind": "enrichment", "record_id": "x"}) is None
    assert worker_env.dead_letter.call_args.args[0] == ENRICHMENT_QUEUE
    worker_env.log_message.assert_not_called()


def test_process_review_rejects_other_job_kind(worker_env):
    assert tasks.process_review({"kind": "log", "message": "hello"}) is None
    worker_env.dead_letter.assert_called_once()


def test_process_review_missing_record_is_not_retried(worker_env):
    payload = EnrichmentJob(record_id=12345, text="gone", stars=6).model_dump()
    with patch.object(tasks, "retry_or_exhaust") as retry:
        assert tasks.process_review(payload) is None
    retry.assert_not_called()
    worker_env.dead_letter.assert_called_once()
    assert "skipped" in worker_env.log_message.call_args.args[0]


def test_process_review_storage_failure_goes_to_retry(worker_env):
    payload = EnrichmentJob(record_id=1, text="t", stars=6).model_dump()
    with patch.object(tasks, "enrich_review", side_effect=DependencyError("db down")), \
            patch.object(tasks, "retry_or_exhaust", side_effect=RuntimeError("retry scheduled")) as retry:
        with pytest.raises(RuntimeError):
            tasks.process_review(payload, attempts=3, backoff=2)

    queue_name, _, exc, attempts, backoff = retry.call_args.args[1:]
    assert queue_name == ENRICHMENT_QUEUE
    assert isinstance(exc, DependencyError)
    assert (attempts, backoff) == (3, 2)
    assert "Enrichment failed for review 1" in worker_env.log_message.call_args.args[0]


def test_record_access_persists_entry(db, worker_env):
    entry_id = tasks.record_access(LogJob(message="GET /reviews/trends").model_dump())
    assert db.get(AccessLog, entry_id).text == "GET /reviews/trends"


def test_record_access_does_not_log_itself(worker_env):
    with patch.object(tasks, "persist_log_entry", side_effect=DependencyError("db down")), \
            patch.object(tasks, "retry_or_exhaust", side_effect=RuntimeError("retry scheduled")) as retry:
        with pytest.raises(RuntimeError):
            tasks.record_access(LogJob(message="x").model_dump())
    assert retry.call_args.args[1] == AUDITLOG_QUEUE
    worker_env.log_message.assert_not_called()


def test_retry_uses_exponential_backoff():
    task = fake_task(retries=1)
    with pytest.raises(RuntimeError):
        tasks.retry_or_exhaust(task, ENRICHMENT_QUEUE, {}, DependencyError("db down"), 3, 2)

    kwargs = task.retry.call_args.kwargs
    assert kwargs["countdown"] == 4
    assert kwargs["max_retries"] == 2


def test_exhausted_job_moves_to_failed_set():
    task = fake_task(retries=2, task_id="task-9")
    with patch.object(tasks, "dead_letter") as dead_letter:
        with pytest.raises(JobExhaustedError) as excinfo:
            tasks.retry_or_exhaust(task, AUDITLOG_QUEUE, {"kind": "log"}, DependencyError("db down"), 3, 1)

    task.retry.assert_not_called()
    assert excinfo.value.task_id == "task-9"
    dead_letter.assert_called_once_with(AUDITLOG_QUEUE, "task-9", {"kind": "log"}, 3, "db down")
