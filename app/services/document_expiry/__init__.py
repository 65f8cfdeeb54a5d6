from .document_registry import (
    DocumentRegistry,
    DocumentSnapshot,
    NotificationOverrides,
    get_document_registry,
)
from .dispatcher import (
    DispatchOutcome,
    DispatchResult,
    NotificationDispatcher,
    render_document_expiry_message,
    render_email_test_message,
)
from .job_store import NotificationJobStore
from .mail_transport import MailTransport, SendResult, SmtpMailTransport
from .notification_defaults import (
    NotificationDefaults,
    NotificationDefaultsRepository,
    normalize_thresholds,
)
from .policy_resolver import NotificationPolicyResolver
from .scan_engine import DocumentScanEngine, ScanResult
from .supervisor import (
    DocumentExpirySupervisor,
    TickReport,
    get_document_expiry_supervisor,
)

__all__ = [
    "DocumentRegistry",
    "DocumentSnapshot",
    "NotificationOverrides",
    "get_document_registry",
    "DispatchOutcome",
    "DispatchResult",
    "NotificationDispatcher",
    "render_document_expiry_message",
    "render_email_test_message",
    "NotificationJobStore",
    "MailTransport",
    "SendResult",
    "SmtpMailTransport",
    "NotificationDefaults",
    "NotificationDefaultsRepository",
    "normalize_thresholds",
    "NotificationPolicyResolver",
    "DocumentScanEngine",
    "ScanResult",
    "DocumentExpirySupervisor",
    "TickReport",
    "get_document_expiry_supervisor",
]
