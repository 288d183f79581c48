"""
Celery application configuration.

Configures Celery for background pipeline processing with Redis as the broker.
"""
from celery import Celery

from dealforge.config import get_settings
from dealforge.middleware.logging import configure_logging

configure_logging()

REDIS_URL = get_settings().redis_url

celery_app = Celery(
    "dealforge",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["dealforge.tasks.pipeline_tasks"],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completes (not before)
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_time_limit=1800,  # 30 minute hard limit; document generation is the long stage
    task_soft_time_limit=1740,

    # Result settings
    result_expires=86400,

    # Worker settings
    worker_prefetch_multiplier=1,  # One deal at a time per worker process
    worker_concurrency=4,

    # Retry settings
    task_default_retry_delay=60,
    task_max_retries=3,
)

celery_app.conf.task_routes = {
    "dealforge.tasks.pipeline_tasks.run_deal_pipeline": {"queue": "pipeline"},
    "dealforge.tasks.pipeline_tasks.resume_deal_pipeline": {"queue": "pipeline"},
    "dealforge.tasks.pipeline_tasks.approve_deal_terms": {"queue": "pipeline"},
}
