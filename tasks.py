"""
Celery tasks for the enrichment and audit-log queues.

The task bodies are thin: payload validation, retry bookkeeping and audit
messages live here, the actual work is in ``enrich_review`` and
``persist_log_entry`` so it can run without a broker.
"""
import logging
from typing import Optional

import redis
from celery.signals import worker_shutdown
from pydantic import ValidationError as PayloadError

from classifier import ReviewClassifier
from database import SessionLocal, engine
from errors import JobExhaustedError, NotFoundError
from queues import (
    AUDITLOG_QUEUE,
    ENRICHMENT_QUEUE,
    QUEUE_POLICIES,
    backoff_delay,
    celery_app,
    get_failed_store,
    log_message,
)
from repository import ReviewRepository
from schemas import EnrichmentJob, LogJob, ToneSentiment, parse_job

logger = logging.getLogger(__name__)

_classifier: Optional[ReviewClassifier] = None


def get_classifier() -> ReviewClassifier:
    global _classifier
    if _classifier is None:
        _classifier = ReviewClassifier.from_settings()
    return _classifier


def enrich_review(job: EnrichmentJob, session_factory, classifier: ReviewClassifier) -> ToneSentiment:
    result = classifier.classify(job.text, job.stars)
    db = session_factory()
    try:
        changed = ReviewRepository(db).save_enrichment(job.record_id, result.tone, result.sentiment)
    finally:
        db.close()
    if not changed:
        logger.info(f"Review {job.record_id} already labelled {result.tone}/{result.sentiment}")
    return result


def persist_log_entry(job: LogJob, session_factory) -> int:
    db = session_factory()
    try:
        entry = ReviewRepository(db).add_access_log(job.message)
        return entry.id
    finally:
        db.close()


def dead_letter(queue_name: str, task_id, payload, attempts: int, error: str) -> None:
    try:
        get_failed_store().record(queue_name, task_id, payload, attempts, error)
    except redis.RedisError as e:
        logger.error(f"Could not record failed job {task_id} on '{queue_name}': {str(e)}")
    logger.warning(f"Job {task_id} on '{queue_name}' moved to failed set: {error}")


def retry_or_exhaust(task, queue_name: str, payload, exc: Exception, attempts: int, backoff: float):
    """Schedule the next delivery, or give up once all attempts are used."""
    retries = task.request.retries
    if retries + 1 >= attempts:
        exhausted = JobExhaustedError(queue_name, task.request.id, attempts, str(exc))
        logger.error(exhausted.message)
        dead_letter(queue_name, task.request.id, payload, attempts, str(exc))
        raise exhausted from exc
    countdown = backoff_delay(backoff, retries)
    logger.warning(
        f"Job {task.request.id} on '{queue_name}' failed (attempt {retries + 1}/{attempts}), "
        f"retrying in {countdown}s: {str(exc)}"
    )
    raise task.retry(exc=exc, countdown=countdown, max_retries=attempts - 1)


@celery_app.task(bind=True, name=QUEUE_POLICIES[ENRICHMENT_QUEUE].task_name)
def process_review(self, payload, attempts: int = 3, backoff: float = 2):
    try:
        job = parse_job(payload, EnrichmentJob)
    except (PayloadError, TypeError) as e:
        dead_letter(ENRICHMENT_QUEUE, self.request.id, payload, self.request.retries + 1,
                    f"Malformed payload: {e}")
        return None

    try:
        result = enrich_review(job, SessionLocal, get_classifier())
    except NotFoundError as e:
        log_message(f"Enrichment skipped for review {job.record_id}: {e.message}")
        dead_letter(ENRICHMENT_QUEUE, self.request.id, payload, self.request.retries + 1, e.message)
        return None
    except Exception as e:
        logger.error(f"Error processing review {job.record_id}: {str(e)}")
        log_message(
            f"Enrichment failed for review {job.record_id} "
            f"(attempt {self.request.retries + 1}/{attempts}): {str(e)}"
        )
        retry_or_exhaust(self, ENRICHMENT_QUEUE, payload, e, attempts, backoff)

    logger.info(f"Processed review {job.record_id}: tone={result.tone}, sentiment={result.sentiment}")
    log_message(f"Enriched review {job.record_id}: tone={result.tone}, sentiment={result.sentiment}")
    return result.model_dump()


@celery_app.task(bind=True, name=QUEUE_POLICIES[AUDITLOG_QUEUE].task_name)
def record_access(self, payload, attempts: int = 3, backoff: float = 1):
    try:
        job = parse_job(payload, LogJob)
    except (PayloadError, TypeError) as e:
        dead_letter(AUDITLOG_QUEUE, self.request.id, payload, self.request.retries + 1,
                    f"Malformed payload: {e}")
        return None

    try:
        entry_id = persist_log_entry(job, SessionLocal)
    except Exception as e:
        logger.error(f"Error writing access log: {str(e)}")
        retry_or_exhaust(self, AUDITLOG_QUEUE, payload, e, attempts, backoff)

    logger.debug(f"Logged: {job.message}")
    return entry_id


@worker_shutdown.connect
def release_connections(**kwargs):
    engine.dispose()
    logger.info("Database connections released")
