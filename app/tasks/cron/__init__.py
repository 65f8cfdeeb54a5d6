from .document_expiry_notifier import document_expiry_notifier_task

__all__ = [
    "document_expiry_notifier_task",
]
