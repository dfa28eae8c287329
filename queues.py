"""
Celery wiring for the two job queues.

``enrichment`` carries EnrichmentJob payloads to ``tasks.process_review``;
``auditlog`` carries LogJob payloads to ``tasks.record_access``. Each job is
delivered up to ``attempts`` times with an exponential delay of
``backoff * 2 ** retry`` seconds between deliveries. Jobs that run out of
attempts land in a per-queue failed list in Redis and stay there until
someone cleans it.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import redis
from celery import Celery, group
from kombu import Queue
from kombu.exceptions import KombuError
from pydantic import BaseModel

from config import settings
from errors import DependencyError
from schemas import EnrichmentJob, FailedJob, LogJob

logger = logging.getLogger(__name__)

ENRICHMENT_QUEUE = "enrichment"
AUDITLOG_QUEUE = "auditlog"


class QueuePolicy(BaseModel):
    task_name: str
    attempts: int
    backoff: float


QUEUE_POLICIES: Dict[str, QueuePolicy] = {
    ENRICHMENT_QUEUE: QueuePolicy(
        task_name="tasks.process_review",
        attempts=settings.ENRICHMENT_ATTEMPTS,
        backoff=settings.ENRICHMENT_BACKOFF,
    ),
    AUDITLOG_QUEUE: QueuePolicy(
        task_name="tasks.record_access",
        attempts=settings.AUDITLOG_ATTEMPTS,
        backoff=settings.AUDITLOG_BACKOFF,
    ),
}

celery_app = Celery(
    'reviews',
    broker=settings.REDIS_URL,
)
celery_app.conf.update(
    imports=['tasks'],
    task_queues=[Queue(ENRICHMENT_QUEUE), Queue(AUDITLOG_QUEUE)],
    task_default_queue=ENRICHMENT_QUEUE,
    task_routes={
        QUEUE_POLICIES[ENRICHMENT_QUEUE].task_name: {'queue': ENRICHMENT_QUEUE},
        QUEUE_POLICIES[AUDITLOG_QUEUE].task_name: {'queue': AUDITLOG_QUEUE},
    },
    # Ack after the task body returns so a crashed worker's job is redelivered
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_ignore_result=True,
    task_track_started=True,
    broker_connection_retry_on_startup=True,
    task_serializer='json',
    accept_content=['json'],
)


def backoff_delay(backoff: float, retries: int) -> float:
    """Seconds to wait before redelivery number ``retries + 1``."""
    return backoff * (2 ** retries)


def _signature(queue_name: str, job: BaseModel, attempts: Optional[int], backoff: Optional[float]):
    policy = QUEUE_POLICIES[queue_name]
    return celery_app.signature(
        policy.task_name,
        args=[job.model_dump()],
        kwargs={
            "attempts": attempts or policy.attempts,
            "backoff": backoff if backoff is not None else policy.backoff,
        },
        queue=queue_name,
    )


def enqueue(queue_name: str, job: BaseModel, attempts: Optional[int] = None,
            backoff: Optional[float] = None) -> str:
    try:
        result = _signature(queue_name, job, attempts, backoff).apply_async()
    except (KombuError, OSError) as e:
        logger.error(f"Failed to enqueue job on '{queue_name}': {str(e)}")
        raise DependencyError(f"Job queue '{queue_name}' unavailable") from e
    return result.id


def enqueue_bulk(queue_name: str, jobs: Iterable[BaseModel]) -> int:
    """Publish several jobs in one call. Returns how many were sent."""
    signatures = [_signature(queue_name, job, None, None) for job in jobs]
    if not signatures:
        return 0
    try:
        group(signatures).apply_async()
    except (KombuError, OSError) as e:
        logger.error(f"Failed to enqueue {len(signatures)} jobs on '{queue_name}': {str(e)}")
        raise DependencyError(f"Job queue '{queue_name}' unavailable") from e
    logger.info(f"Queued {len(signatures)} jobs on '{queue_name}'")
    return len(signatures)


def enqueue_enrichment(reviews) -> int:
    """Queue classification for reviews that have text. Returns the number queued."""
    jobs = [
        EnrichmentJob(record_id=review.id, text=review.text, stars=review.stars)
        for review in reviews
        if review.text
    ]
    return enqueue_bulk(ENRICHMENT_QUEUE, jobs)


def log_message(message: str) -> bool:
    """Queue an audit log entry. Never raises; returns False if it was dropped."""
    try:
        enqueue(AUDITLOG_QUEUE, LogJob(message=message))
    except Exception as e:
        logger.error(f"Failed to queue audit log: {str(e)}")
        return False
    return True


def create_log_message(endpoint: str, params: Optional[dict] = None) -> str:
    timestamp = datetime.now(timezone.utc).isoformat()
    params_string = ""
    if params:
        params_string = " " + "&".join(f"{key}={value}" for key, value in params.items())
    return f"{endpoint}{params_string} - {timestamp}"


def log_api_request(endpoint: str, params: Optional[dict] = None) -> bool:
    return log_message(create_log_message(endpoint, params))


class FailedJobStore:
    """Failed jobs kept in a Redis list per queue, newest last."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "FailedJobStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    @staticmethod
    def key(queue_name: str) -> str:
        return f"{queue_name}:failed"

    def record(self, queue_name: str, task_id: Optional[str], payload, attempts: int, error: str) -> FailedJob:
        entry = FailedJob(
            queue=queue_name,
            task_id=task_id,
            payload=payload if isinstance(payload, dict) else {"raw": repr(payload)},
            attempts=attempts,
            error=error,
            failed_at=datetime.now(timezone.utc).isoformat(),
        )
        self.client.rpush(self.key(queue_name), entry.model_dump_json())
        return entry

    def entries(self, queue_name: str, limit: int = 100) -> List[FailedJob]:
        raw = self.client.lrange(self.key(queue_name), 0, limit - 1)
        return [FailedJob(**json.loads(item)) for item in raw]

    def count(self, queue_name: str) -> int:
        return self.client.llen(self.key(queue_name))

    def clean(self, queue_name: str) -> int:
        removed = self.count(queue_name)
        self.client.delete(self.key(queue_name))
        return removed


_failed_store: Optional[FailedJobStore] = None


def get_failed_store() -> FailedJobStore:
    global _failed_store
    if _failed_store is None:
        _failed_store = FailedJobStore.from_url(settings.REDIS_URL)
    return _failed_store


def get_queue_stats(store: Optional[FailedJobStore] = None) -> dict:
    """Waiting and failed counts per queue.

    With the Redis transport a queue's pending messages sit in a list named
    after the queue.
    """
    store = store or get_failed_store()
    try:
        return {
            name: {
                "waiting": store.client.llen(name),
                "failed": store.count(name),
            }
            for name in QUEUE_POLICIES
        }
    except redis.RedisError as e:
        logger.error(f"Failed to read queue stats: {str(e)}")
        raise DependencyError("Job queue unavailable") from e


def list_failed(queue_name: str, store: Optional[FailedJobStore] = None) -> List[FailedJob]:
    store = store or get_failed_store()
    try:
        return store.entries(queue_name)
    except redis.RedisError as e:
        raise DependencyError("Job queue unavailable") from e


def clean_failed(queue_name: Optional[str] = None, store: Optional[FailedJobStore] = None) -> Dict[str, int]:
    store = store or get_failed_store()
    names = [queue_name] if queue_name else list(QUEUE_POLICIES)
    try:
        removed = {name: store.clean(name) for name in names}
    except redis.RedisError as e:
        raise DependencyError("Job queue unavailable") from e
    logger.info(f"Cleaned failed jobs: {removed}")
    return removed
