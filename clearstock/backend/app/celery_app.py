from celery import Celery

from app.config import CELERY_ALWAYS_EAGER, EXPIRY_SCAN_INTERVAL_SECONDS, REDIS_URL

celery_app = Celery('tasks', broker=REDIS_URL, backend=REDIS_URL, include=['app.tasks'])


celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    task_always_eager=CELERY_ALWAYS_EAGER,
    task_eager_propagates=True,
    beat_schedule={
        'scan-expired-batches': {
            'task': 'tasks.scan_expired_batches',
            'schedule': float(EXPIRY_SCAN_INTERVAL_SECONDS),
        },
    },
)
