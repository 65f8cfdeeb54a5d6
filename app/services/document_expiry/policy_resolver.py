from datetime import date, timedelta
from typing import List, Tuple

from .document_registry import DocumentSnapshot, NotificationOverrides
from .notification_defaults import NotificationDefaults


class NotificationPolicyResolver:
    """Decides which expiry warnings are due for a document on a given day"""

    def __init__(self, defaults: NotificationDefaults):
        self.defaults = defaults

    def effective_thresholds(self, overrides: NotificationOverrides) -> Tuple[int, ...]:
        """Document overrides win when present; otherwise the current defaults apply"""
        if not overrides.enabled:
            return ()

        if overrides.thresholds:
            return tuple(sorted(set(overrides.thresholds), reverse=True))

        return self.defaults.snapshot()

    def due_thresholds(self, document: DocumentSnapshot, today: date) -> List[int]:
        """
        Thresholds whose warning date has been reached, largest lead time first.

        A threshold d is due once today >= expiry_date - d days. For a document
        that has already expired every threshold is due at once; each one is
        returned separately since each is its own missed warning point.
        """
        return [
            days
            for days in self.effective_thresholds(document.overrides)
            if today >= document.expiry_date - timedelta(days=days)
        ]
