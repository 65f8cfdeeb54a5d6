from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "document_expiry_notifier_task",
]
