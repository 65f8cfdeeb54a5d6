from celery.schedules import crontab
from .settings import settings

_redis_url = (
    f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:"
    f"{settings.REDIS_PORT}/{settings.REDIS_DB}"
)

broker_url = _redis_url
result_backend = _redis_url
include = ["app.tasks"]

# Crontab entries below are read in business time
timezone = settings.BUSINESS_TIMEZONE
enable_utc = True

task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
result_expires = 24 * 60 * 60

# A tick sends at most one SMTP conversation per due job, each bounded by
# NOTIFICATION_SEND_TIMEOUT_SECONDS
task_track_started = True
task_time_limit = 20 * 60
task_soft_time_limit = 15 * 60

# Jobs are claimed in the database, so a redelivered tick cannot double send
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1
task_default_retry_delay = 60
task_max_retries = 3

task_default_queue = "rental_backoffice"

# Only use beat with DOCUMENT_EXPIRY_SCHEDULER_ENABLED=false, otherwise the
# in-process supervisor ticks as well
beat_schedule = {
    "daily-document-expiry-notifier": {
        "task": "app.tasks.cron.document_expiry_notifier.document_expiry_notifier_task",
        "schedule": crontab(hour=8, minute=0),
        "args": ("document_expiry_notifier_cron",),
    },
}
beat_schedule_filename = "tmp/celerybeat-schedule"
