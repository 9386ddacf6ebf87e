from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from onboardsign.core.config import settings
from onboardsign.core.logging_setup import logger
from onboardsign.models.document import Document, SignatureStatus
from onboardsign.models.signature_event import SignatureEventReceipt
from onboardsign.schemas.signature import SignatureMetadata, SignatureWebhookPayload, SignerRecord
from onboardsign.services.audit import AuditService
from onboardsign.services.document_store import DocumentStore
from onboardsign.services.errors import StaleDocumentError
from onboardsign.services.signature import document_action_url
from onboardsign.services.user_notifications import UserNotificationService

DEFAULT_DECLINE_REASON = "User declined to sign"


class SignatureEventType(str, Enum):
    VIEWED = "signature_request_viewed"
    SIGNED = "signature_request_signed"
    ALL_SIGNED = "signature_request_all_signed"
    DECLINED = "signature_request_declined"
    CANCELED = "signature_request_canceled"
    REASSIGNED = "signature_request_reassigned"
    REMINDED = "signature_request_remind"
    EXPIRED = "signature_request_expired"
    CALLBACK_TEST = "callback_test"

    @classmethod
    def parse(cls, raw: str | None) -> Optional["SignatureEventType"]:
        """Map a provider event name to a known type, or None when unrecognized."""
        if not raw:
            return None
        key = raw.strip().lower().replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            pass
        if key.startswith("signature_request_"):
            key = key[len("signature_request_"):]
        return _SHORT_EVENT_NAMES.get(key)


_SHORT_EVENT_NAMES = {
    "viewed": SignatureEventType.VIEWED,
    "signed": SignatureEventType.SIGNED,
    "all_signed": SignatureEventType.ALL_SIGNED,
    "declined": SignatureEventType.DECLINED,
    "canceled": SignatureEventType.CANCELED,
    "cancelled": SignatureEventType.CANCELED,
    "reassigned": SignatureEventType.REASSIGNED,
    "remind": SignatureEventType.REMINDED,
    "reminded": SignatureEventType.REMINDED,
    "expired": SignatureEventType.EXPIRED,
}

# Events that only enrich metadata; older deliveries of these are skipped.
INFORMATIONAL_EVENTS = frozenset(
    {
        SignatureEventType.VIEWED,
        SignatureEventType.SIGNED,
        SignatureEventType.REASSIGNED,
        SignatureEventType.REMINDED,
    }
)


class EventOutcome(str, Enum):
    APPLIED = "applied"
    LOGGED = "logged"
    DUPLICATE = "duplicate"
    STALE = "stale"
    ORPHANED = "orphaned"
    IGNORED = "ignored"
    TERMINAL = "terminal"
    DROPPED = "dropped"


def _from_epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_event_time(raw: str | None) -> datetime | None:
    raw = (raw or "").strip()
    try:
        return _from_epoch(float(raw))
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass
class SignerStatus:
    email: str
    signature_id: str | None = None
    name: str | None = None
    status_code: str | None = None
    signed_at: datetime | None = None
    last_viewed_at: datetime | None = None
    last_reminded_at: datetime | None = None
    reassigned_by: str | None = None
    decline_reason: str | None = None
    error: str | None = None

    def to_record(self) -> SignerRecord:
        return SignerRecord(
            email=self.email,
            signature_id=self.signature_id,
            name=self.name,
            status_code=self.status_code,
            signed_at=self.signed_at,
            last_viewed_at=self.last_viewed_at,
            last_reminded_at=self.last_reminded_at,
            decline_reason=self.decline_reason,
            error=self.error,
        )


@dataclass
class InboundSignatureEvent:
    event_type: str
    event_time: str
    signature_request_id: str
    signatures: list[SignerStatus] = field(default_factory=list)
    final_copy_reference: str | None = None
    received_at: datetime = field(default_factory=datetime.utcnow)
    # Provider time of the event, or None when event_time is not a timestamp.
    event_at: datetime | None = field(init=False, default=None)

    @classmethod
    def from_payload(cls, payload: SignatureWebhookPayload) -> "InboundSignatureEvent":
        request = payload.signature_request
        if request is None:
            raise ValueError("Payload has no signature_request")
        return cls(
            event_type=payload.event.event_type,
            event_time=payload.event.event_time,
            signature_request_id=request.signature_request_id,
            signatures=[
                SignerStatus(
                    email=item.signer_email_address.strip().lower(),
                    signature_id=item.signature_id,
                    name=item.signer_name,
                    status_code=item.status_code,
                    signed_at=_from_epoch(item.signed_at),
                    last_viewed_at=_from_epoch(item.last_viewed_at),
                    last_reminded_at=_from_epoch(item.last_reminded_at),
                    reassigned_by=item.reassigned_by,
                    decline_reason=item.decline_reason,
                    error=item.error,
                )
                for item in request.signatures
            ],
            final_copy_reference=request.final_copy_uri,
        )

    def __post_init__(self) -> None:
        self.event_at = _parse_event_time(self.event_time)

    @property
    def occurred_at(self) -> datetime:
        return self.event_at or self.received_at

    def signer_records(self) -> dict[str, SignerRecord]:
        return {signer.email: signer.to_record() for signer in self.signatures}


@dataclass
class ProcessResult:
    outcome: EventOutcome
    event_type: str
    signature_request_id: str
    document_id: UUID | None = None
    status: SignatureStatus | None = None


@dataclass
class _Transition:
    metadata: SignatureMetadata
    status: SignatureStatus | None = None
    signed_at: datetime | None = None
    audit: dict | None = None
    notification: dict | None = None


class SignatureEventProcessor:
    """Applies authenticated provider events to the document signature lifecycle."""

    def __init__(self, session: Session, *, max_retries: int | None = None) -> None:
        self.session = session
        self.max_retries = max(1, max_retries or settings.signature_event_max_retries)
        self.documents = DocumentStore(session)
        self.audit = AuditService(session)
        self.notifications = UserNotificationService(session)
        self._handlers: dict[SignatureEventType, Callable[[Document, InboundSignatureEvent], _Transition | None]] = {
            SignatureEventType.VIEWED: self._on_viewed,
            SignatureEventType.SIGNED: self._on_signed,
            SignatureEventType.ALL_SIGNED: self._on_all_signed,
            SignatureEventType.DECLINED: self._on_declined,
            SignatureEventType.CANCELED: self._on_canceled,
            SignatureEventType.REASSIGNED: self._on_reassigned,
            SignatureEventType.REMINDED: self._on_reminded,
            SignatureEventType.EXPIRED: self._on_expired,
        }

    def process(self, event: InboundSignatureEvent) -> ProcessResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._process_once(event)
            except StaleDocumentError:
                self.session.rollback()
                if attempt >= self.max_retries:
                    logger.error(
                        "[WEBHOOK] dropping %s for request_id=%s after %s conflicting updates",
                        event.event_type,
                        event.signature_request_id,
                        attempt,
                    )
                    return self._result(event, EventOutcome.DROPPED)
                logger.info(
                    "[WEBHOOK] concurrent update on request_id=%s, retrying (%s/%s)",
                    event.signature_request_id,
                    attempt,
                    self.max_retries,
                )
            except IntegrityError:
                self.session.rollback()
                if self._already_applied(event):
                    logger.info(
                        "[WEBHOOK] %s for request_id=%s applied concurrently, skipping",
                        event.event_type,
                        event.signature_request_id,
                    )
                    return self._result(event, EventOutcome.DUPLICATE)
                if attempt >= self.max_retries:
                    logger.exception(
                        "[WEBHOOK] dropping %s for request_id=%s after integrity errors",
                        event.event_type,
                        event.signature_request_id,
                    )
                    return self._result(event, EventOutcome.DROPPED)
                logger.warning(
                    "[WEBHOOK] integrity error on request_id=%s, retrying (%s/%s)",
                    event.signature_request_id,
                    attempt,
                    self.max_retries,
                )
            except SQLAlchemyError:
                self.session.rollback()
                if attempt >= self.max_retries:
                    logger.exception(
                        "[WEBHOOK] dropping %s for request_id=%s after %s failed writes",
                        event.event_type,
                        event.signature_request_id,
                        attempt,
                    )
                    return self._result(event, EventOutcome.DROPPED)
                logger.warning(
                    "[WEBHOOK] store failure on request_id=%s, retrying (%s/%s)",
                    event.signature_request_id,
                    attempt,
                    self.max_retries,
                )

    # Internals -----------------------------------------------------------
    @staticmethod
    def _result(
        event: InboundSignatureEvent,
        outcome: EventOutcome,
        document: Document | None = None,
    ) -> ProcessResult:
        return ProcessResult(
            outcome=outcome,
            event_type=event.event_type,
            signature_request_id=event.signature_request_id,
            document_id=document.id if document else None,
            status=document.signature_status if document else None,
        )

    def _already_applied(self, event: InboundSignatureEvent) -> bool:
        receipt = self.session.exec(
            select(SignatureEventReceipt)
            .where(SignatureEventReceipt.signature_request_id == event.signature_request_id)
            .where(SignatureEventReceipt.event_type == event.event_type)
            .where(SignatureEventReceipt.event_time == event.event_time)
        ).first()
        return receipt is not None

    def _process_once(self, event: InboundSignatureEvent) -> ProcessResult:
        self.session.expire_all()
        document = self.documents.get_by_request_id(event.signature_request_id)
        if document is None:
            logger.warning(
                "[WEBHOOK] orphaned %s: no document for request_id=%s",
                event.event_type,
                event.signature_request_id,
            )
            return self._result(event, EventOutcome.ORPHANED)

        if self._already_applied(event):
            logger.info(
                "[WEBHOOK] duplicate %s at %s for request_id=%s",
                event.event_type,
                event.event_time,
                event.signature_request_id,
            )
            return self._result(event, EventOutcome.DUPLICATE, document)

        if document.signature_status.is_terminal:
            logger.info(
                "[WEBHOOK] dropping %s for document_id=%s in terminal status %s",
                event.event_type,
                document.id,
                document.signature_status.value,
            )
            return self._result(event, EventOutcome.TERMINAL, document)

        event_type = SignatureEventType.parse(event.event_type)
        handler = self._handlers.get(event_type) if event_type else None
        if handler is None:
            logger.info(
                "[WEBHOOK] ignoring unrecognized event %s for request_id=%s",
                event.event_type,
                event.signature_request_id,
            )
            return self._result(event, EventOutcome.IGNORED, document)

        occurred_at = event.event_at
        if (
            event_type in INFORMATIONAL_EVENTS
            and occurred_at is not None
            and document.last_event_at is not None
            and occurred_at < document.last_event_at
        ):
            logger.info(
                "[WEBHOOK] stale %s at %s for document_id=%s (last applied %s)",
                event.event_type,
                occurred_at.isoformat(),
                document.id,
                document.last_event_at.isoformat(),
            )
            return self._result(event, EventOutcome.STALE, document)

        transition = handler(document, event)
        if transition is None:
            return self._result(event, EventOutcome.LOGGED, document)

        self._apply(document, event, transition)
        self.session.refresh(document)
        logger.info(
            "[WEBHOOK] applied %s to document_id=%s status=%s",
            event.event_type,
            document.id,
            document.signature_status.value,
        )
        return self._result(event, EventOutcome.APPLIED, document)

    def _apply(self, document: Document, event: InboundSignatureEvent, transition: _Transition) -> None:
        changes = {"signature_metadata": self.documents.merged_metadata(document, transition.metadata)}
        # Unparseable provider times leave the ordering watermark untouched.
        if event.event_at is not None:
            last_event_at = document.last_event_at
            changes["last_event_at"] = (
                event.event_at if last_event_at is None else max(last_event_at, event.event_at)
            )
        if transition.status is not None:
            changes["signature_status"] = transition.status
        if transition.signed_at is not None:
            changes["signed_at"] = transition.signed_at

        self.session.add(
            SignatureEventReceipt(
                signature_request_id=event.signature_request_id,
                event_type=event.event_type,
                event_time=event.event_time,
                document_id=document.id,
                outcome=EventOutcome.APPLIED.value,
            )
        )
        self.session.flush()
        self.documents.update(document, **changes)
        if transition.audit:
            self.audit.record_event(document_id=document.id, commit=False, **transition.audit)
        if transition.notification:
            self.notifications.create_notification(
                recipient_id=document.owner_id,
                document_id=document.id,
                action_url=document_action_url(document.id),
                commit=False,
                **transition.notification,
            )
        self.session.commit()

    # Handlers --------------------------------------------------------------
    def _on_viewed(self, document: Document, event: InboundSignatureEvent) -> _Transition:
        viewed_times = [signer.last_viewed_at for signer in event.signatures if signer.last_viewed_at]
        viewed_at = max(viewed_times) if viewed_times else event.occurred_at
        current = self.documents.metadata_of(document).last_viewed_at
        if current is not None and current > viewed_at:
            viewed_at = current
        return _Transition(
            metadata=SignatureMetadata(last_viewed_at=viewed_at, signers=event.signer_records()),
        )

    def _on_signed(self, document: Document, event: InboundSignatureEvent) -> _Transition:
        return _Transition(metadata=SignatureMetadata(signers=event.signer_records()))

    def _on_all_signed(self, document: Document, event: InboundSignatureEvent) -> _Transition:
        signed_times = [signer.signed_at for signer in event.signatures if signer.signed_at]
        signed_at = max(signed_times) if signed_times else event.occurred_at
        recipient = event.signatures[0].email if event.signatures else None
        return _Transition(
            status=SignatureStatus.SIGNED,
            signed_at=signed_at,
            metadata=SignatureMetadata(
                signed_at=signed_at,
                final_copy_reference=event.final_copy_reference,
                signers=event.signer_records(),
            ),
            audit={
                "record_type": "signature_completed",
                "recipient_email": recipient,
                "subject": f"Document signed: {document.name}",
                "content": f'The document "{document.name}" has been successfully signed by all parties.',
                "details": {
                    "signature_request_id": event.signature_request_id,
                    "final_copy_reference": event.final_copy_reference,
                    "signers": [signer.email for signer in event.signatures],
                },
            },
            notification={
                "event_type": "signature_completed",
                "title": "Document Signed",
                "message": f"{document.name} has been signed by all parties",
                "priority": "high",
                "payload": {
                    "document_name": document.name,
                    "signer_email": recipient,
                    "signed_at": signed_at.isoformat(),
                },
            },
        )

    def _on_declined(self, document: Document, event: InboundSignatureEvent) -> _Transition:
        reason = next(
            (signer.decline_reason or signer.error for signer in event.signatures if signer.decline_reason or signer.error),
            DEFAULT_DECLINE_REASON,
        )
        decliner = next(
            (signer.email for signer in event.signatures if (signer.status_code or "").lower() == "declined"),
            None,
        )
        return _Transition(
            status=SignatureStatus.DECLINED,
            metadata=SignatureMetadata(
                declined_at=event.occurred_at,
                decline_reason=reason,
                signers=event.signer_records(),
            ),
            notification={
                "event_type": "signature_declined",
                "title": "Signature Declined",
                "message": f"{document.name} signature was declined",
                "priority": "high",
                "payload": {
                    "document_name": document.name,
                    "signer_email": decliner,
                    "decline_reason": reason,
                },
            },
        )

    def _on_canceled(self, document: Document, event: InboundSignatureEvent) -> _Transition:
        return _Transition(
            status=SignatureStatus.CANCELLED,
            metadata=SignatureMetadata(cancelled_at=event.occurred_at),
        )

    def _on_reassigned(self, document: Document, event: InboundSignatureEvent) -> _Transition:
        current_email = self.documents.metadata_of(document).signer_email
        new_signer = next((signer for signer in event.signatures if signer.reassigned_by), None)
        if new_signer is None:
            new_signer = next((signer for signer in event.signatures if signer.email != current_email), None)
        patch = SignatureMetadata(reassigned_at=event.occurred_at, signers=event.signer_records())
        if new_signer is not None:
            patch.signer_email = new_signer.email
            patch.signer_name = new_signer.name
        return _Transition(metadata=patch)

    def _on_reminded(self, document: Document, event: InboundSignatureEvent) -> None:
        logger.info(
            "[WEBHOOK] reminder sent for document_id=%s request_id=%s",
            document.id,
            event.signature_request_id,
        )
        return None

    def _on_expired(self, document: Document, event: InboundSignatureEvent) -> _Transition:
        return _Transition(
            status=SignatureStatus.EXPIRED,
            metadata=SignatureMetadata(expired_at=event.occurred_at),
        )
