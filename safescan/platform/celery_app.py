from celery import Celery
from kombu import Exchange, Queue

from safescan.platform.config import settings

SCAN_QUEUE = "scan.jobs"
DEAD_LETTER_QUEUE = "scan.dead_letter"
DEAD_LETTER_EXCHANGE = "scan.dlx"


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - scan.jobs: one message per scan job, body {jobId, url, userId}
    - scan.dead_letter: messages rejected after exhausting their retries

    Messages are acknowledged late, so a worker that dies mid-scan gets its
    message redelivered; the job version makes the redelivery harmless.
    """
    celery_app = Celery(
        "safescan",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    dead_letter_exchange = Exchange(DEAD_LETTER_EXCHANGE, type="direct")

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        # Results expire after 1 hour
        result_expires=3600,

        task_routes={
            "safescan.features.scan.workers.tasks.process_scan_job": {"queue": SCAN_QUEUE},
        },

        task_queues=(
            Queue("default"),
            Queue(
                SCAN_QUEUE,
                queue_arguments={
                    "x-dead-letter-exchange": DEAD_LETTER_EXCHANGE,
                    "x-dead-letter-routing-key": DEAD_LETTER_QUEUE,
                },
            ),
            Queue(DEAD_LETTER_QUEUE, exchange=dead_letter_exchange, routing_key=DEAD_LETTER_QUEUE),
        ),

        task_default_queue="default",

        # Fair distribution: a worker holds one scan at a time
        worker_prefetch_multiplier=1,

        task_acks_late=True,
        task_reject_on_worker_lost=True,
    )

    celery_app.autodiscover_tasks(["safescan.features.scan.workers"])

    return celery_app


# Global Celery app instance
celery_app = create_celery_app()
