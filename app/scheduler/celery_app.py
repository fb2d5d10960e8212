from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init

from app.core.config import get_settings
from app.core.logging import setup_logging

settings = get_settings()

celery_app = Celery(
    "rinkslot",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.beat_schedule = {
    "deliver-outbox": {
        "task": "app.scheduler.tasks.deliver_outbox",
        "schedule": settings.outbox_poll_seconds,
    },
    "expire-credits-hourly": {
        "task": "app.scheduler.tasks.expire_credits",
        "schedule": crontab(minute=5),
    },
    "process-recurring-hourly": {
        "task": "app.scheduler.tasks.process_recurring_bookings",
        "schedule": crontab(minute=15),
    },
    "generate-sunday-slots-daily": {
        "task": "app.scheduler.tasks.generate_sunday_slots",
        "schedule": crontab(hour=6, minute=0),
    },
}
celery_app.conf.imports = ("app.scheduler.tasks",)


@worker_process_init.connect
def _configure_worker_logging(**_: object) -> None:
    setup_logging(settings.log_level)
