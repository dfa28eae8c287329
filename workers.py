"""
Start a worker pool for one of the job queues.

    python workers.py enrichment    # classification, 5 concurrent jobs
    python workers.py auditlog      # access log writer, one job at a time

Celery handles SIGTERM/SIGINT with a warm shutdown: jobs in flight finish
before the process exits.
"""
import argparse
import logging

from config import settings
from queues import AUDITLOG_QUEUE, ENRICHMENT_QUEUE, celery_app

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

POOL_CONCURRENCY = {
    ENRICHMENT_QUEUE: settings.ENRICHMENT_CONCURRENCY,
    AUDITLOG_QUEUE: settings.AUDITLOG_CONCURRENCY,
}


def worker_argv(queue_name: str, concurrency: int = None) -> list:
    concurrency = concurrency or POOL_CONCURRENCY[queue_name]
    return [
        "worker",
        f"--queues={queue_name}",
        f"--concurrency={concurrency}",
        f"--hostname={queue_name}@%h",
        f"--loglevel={settings.LOG_LEVEL.upper()}",
    ]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run a review job worker pool")
    parser.add_argument("queue", choices=sorted(POOL_CONCURRENCY))
    parser.add_argument("--concurrency", type=int, default=None)
    args = parser.parse_args(argv)

    logger.info(f"Starting '{args.queue}' worker")
    celery_app.worker_main(worker_argv(args.queue, args.concurrency))


if __name__ == "__main__":
    main()
