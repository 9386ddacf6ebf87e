# noqa: F401 to ensure models are imported for metadata
from onboardsign.models.audit import AuditRecord
from onboardsign.models.document import Document
from onboardsign.models.notification import UserNotification
from onboardsign.models.signature_event import SignatureEventReceipt

__all__ = [
    "AuditRecord",
    "Document",
    "UserNotification",
    "SignatureEventReceipt",
]
