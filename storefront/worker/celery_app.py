import time

from celery import Celery, signals
from loguru import logger
from prometheus_client import Counter, Gauge, Histogram

from storefront.core.config import settings
from storefront.core.logging import setup_logging

CELERY_LOGGERS = ("celery", "celery.app.trace", "kombu", "amqp")
_TASK_START_TIMES = {}


TASKS_STARTED = Counter(
    "storefront_worker_tasks_started_total",
    "Number of Celery tasks started",
    ["task_name"],
)

TASKS_SUCCEEDED = Counter(
    "storefront_worker_tasks_succeeded_total",
    "Number of Celery tasks succeeded",
    ["task_name"],
)

TASKS_FAILED = Counter(
    "storefront_worker_tasks_failed_total",
    "Number of Celery tasks failed",
    ["task_name", "exc_type"],
)

TASKS_RETRIED = Counter(
    "storefront_worker_tasks_retried_total",
    "Number of Celery task executions that ended with RETRY state",
    ["task_name"],
)

TASKS_IN_PROGRESS = Gauge(
    "storefront_worker_tasks_in_progress",
    "Number of Celery tasks currently running",
    ["task_name"],
)

TASK_RUNTIME = Histogram(
    "storefront_worker_task_runtime_seconds",
    "Celery task runtime in seconds",
    ["task_name"],
)


celery_app = Celery("storefront_worker")

celery_app.conf.broker_url = settings.CELERY_BROKER_URL
celery_app.conf.result_backend = settings.CELERY_RESULT_BACKEND
celery_app.conf.task_default_queue = "storefront_fulfillment"
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True
celery_app.conf.imports = ("storefront.worker.tasks",)


@signals.setup_logging.connect
def on_setup_logging(**kwargs):
    setup_logging("storefront_worker", extra_loggers=CELERY_LOGGERS)


@signals.task_prerun.connect
def on_task_prerun(task_id=None, task=None, **_):
    task_name = getattr(task, "name", "unknown")
    _TASK_START_TIMES[task_id] = time.time()
    TASKS_STARTED.labels(task_name=task_name).inc()
    TASKS_IN_PROGRESS.labels(task_name=task_name).inc()
    logger.info("Task started: {task} [{id}]", task=task_name, id=task_id)


@signals.task_postrun.connect
def on_task_postrun(task_id=None, task=None, state=None, **_):
    task_name = getattr(task, "name", "unknown")
    start_time = _TASK_START_TIMES.pop(task_id, None)
    if start_time is not None:
        TASK_RUNTIME.labels(task_name=task_name).observe(time.time() - start_time)
    TASKS_IN_PROGRESS.labels(task_name=task_name).dec()

    if state == "SUCCESS":
        TASKS_SUCCEEDED.labels(task_name=task_name).inc()
        logger.info("Task finished successfully: {task} [{id}]", task=task_name, id=task_id)
    else:
        if state == "RETRY":
            TASKS_RETRIED.labels(task_name=task_name).inc()
        logger.warning(
            "Task finished with state {state}: {task} [{id}]",
            state=state,
            task=task_name,
            id=task_id,
        )


@signals.task_failure.connect
def on_task_failure(task_id=None, exception=None, sender=None, **_):
    task_name = getattr(sender, "name", "unknown")
    exc_type = type(exception).__name__ if exception is not None else "unknown"
    TASKS_FAILED.labels(task_name=task_name, exc_type=exc_type).inc()
    logger.error(
        "Task failed: {task} [{id}] - {exc}",
        task=task_name,
        id=task_id,
        exc=exception,
    )
