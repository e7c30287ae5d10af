from celery import Celery
from celery.signals import setup_logging

from app.config import settings
from app.logging import configure_logging


def get_celery_config() -> dict:
    return {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "timezone": settings.celery_timezone,
        "task_serializer": "json",
        "result_serializer": "json",
        "accept_content": ["json"],
        "task_acks_late": True,
        "task_default_queue": "default",
        "task_routes": {
            "app.tasks.publications.*": {"queue": settings.publication_queue_name},
        },
    }


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()


celery_app = Celery("library_publications")
celery_app.conf.update(get_celery_config())
celery_app.autodiscover_tasks(["app.tasks"])
