import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("studio_payments")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Poll the gateway for invoices whose webhook never arrived - every 5 minutes
    "sync-pending-gateway-payments": {
        "task": "finances.sync_pending_gateway_payments",
        "schedule": crontab(minute="*/5"),
    },
    # Fail pending payments whose invoice expired - every minute
    "expire-stale-payments": {
        "task": "finances.expire_stale_payments",
        "schedule": 60.0,
        "options": {"expires": 50},
    },
}

app.conf.timezone = "Asia/Jakarta"
