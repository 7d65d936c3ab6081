from celery import Celery
from config import config

BROKER_URL = config.celery_broker_url
BACKEND_URL = config.celery_backend_url

celery_app = Celery(
    "lifecycle_tasks",
    broker=BROKER_URL,
    backend=BACKEND_URL,
    # This ensures the tasks are loaded when the worker starts
    include=["celery_tasks.event_tasks", "celery_tasks.sweep_tasks"]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # === Producer-Side (Sending Message) Retry Settings ===
    # Retries publishing when the client cannot connect to the broker.
    task_publish_retry=True,
    task_publish_retry_policy={
        'max_retries': 10,
        'interval_start': 0.5,
        'interval_step': 0.5,
        'interval_max': 5,
    },
)

celery_app.conf.task_routes = {
    'celery_tasks.event_tasks.*': {'queue': 'default'},
    # Sweeps get their own queue so a backlog of events never delays them
    'celery_tasks.sweep_tasks.*': {'queue': 'lifecycle'},
}

# Run with `celery -A celery_config beat`; the sweep lock keeps runs from overlapping
celery_app.conf.beat_schedule = {
    'lifecycle-sweep': {
        'task': 'celery_tasks.sweep_tasks.run_lifecycle_sweep',
        'schedule': float(config.sweep_interval_seconds),
        # A sweep that could not start before the next one is due is dropped
        'options': {'expires': config.sweep_interval_seconds},
    },
}
