from celery import Celery

from growthcrm.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "growthcrm_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["growthcrm.automation.tasks"],
)
celery_app.conf.beat_schedule = {
    "reconcile-cascades": {
        "task": "growthcrm.automation.reconcile_cascades",
        "schedule": settings.cascade_reconcile_interval_seconds,
    },
}
