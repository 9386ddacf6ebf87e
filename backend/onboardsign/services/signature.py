from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from onboardsign.core.config import settings
from onboardsign.core.logging_setup import logger
from onboardsign.models.document import Document, SignatureStatus
from onboardsign.schemas.signature import SignatureMetadata
from onboardsign.services.audit import AuditService
from onboardsign.services.document_store import DocumentStore
from onboardsign.services.errors import (
    CollaboratorFailure,
    DocumentNotFoundError,
    InvalidSignerError,
    PreconditionViolation,
    ProviderError,
    StaleDocumentError,
)
from onboardsign.services.signature_provider import SignatureProvider, get_signature_provider
from onboardsign.services.user_notifications import UserNotificationService
from onboardsign.utils.email_validation import normalize_email


@dataclass
class SignatureRequestResult:
    document_id: UUID
    request_id: str
    signing_url: str
    status: SignatureStatus


@dataclass
class SignatureStatusInfo:
    document_id: UUID
    status: SignatureStatus
    signed_at: datetime | None = None
    signer_info: dict[str, Any] | None = None


def document_action_url(document_id: UUID) -> str:
    return f"/documents?highlight={document_id}"


class SignatureRequestService:
    """Issues, inspects and cancels signature requests for documents."""

    REQUESTABLE_STATUSES = frozenset(
        {SignatureStatus.NOT_SENT, SignatureStatus.DECLINED, SignatureStatus.CANCELLED}
    )

    def __init__(self, session: Session, provider: SignatureProvider | None = None) -> None:
        self.session = session
        self.provider = provider or get_signature_provider()
        self.documents = DocumentStore(session)
        self.audit = AuditService(session)
        self.notifications = UserNotificationService(session)

    def _get_document(self, document_id: UUID) -> Document:
        document = self.documents.get(document_id)
        if not document:
            raise DocumentNotFoundError("Document not found", details={"document_id": str(document_id)})
        return document

    @staticmethod
    def _normalize_signer(signer_email: str, signer_name: str) -> tuple[str, str]:
        try:
            email = normalize_email(signer_email)
        except ValueError as exc:
            raise InvalidSignerError(str(exc), details={"signer_email": signer_email}) from exc
        name = (signer_name or "").strip()
        if not name:
            raise InvalidSignerError("Signer name is required")
        return email, name

    def _ensure_requestable(self, document: Document) -> None:
        if not document.signature_required:
            raise PreconditionViolation(
                "Document does not require a signature",
                details={"document_id": str(document.id)},
            )
        if document.signature_status == SignatureStatus.PENDING:
            raise PreconditionViolation(
                "Signature request already pending",
                details={"document_id": str(document.id), "signature_request_id": document.signature_request_id},
            )
        if document.signature_status not in self.REQUESTABLE_STATUSES:
            raise PreconditionViolation(
                f"Cannot request a signature for a document in status '{document.signature_status.value}'",
                details={"document_id": str(document.id), "status": document.signature_status.value},
            )

    # Request -------------------------------------------------------------
    def request_signature(
        self,
        document_id: UUID,
        *,
        signer_email: str,
        signer_name: str,
        subject: str | None = None,
        message: str | None = None,
        redirect_url: str | None = None,
        requested_by: str | None = None,
    ) -> SignatureRequestResult:
        signer_email, signer_name = self._normalize_signer(signer_email, signer_name)
        document = self._get_document(document_id)
        self._ensure_requestable(document)

        prior_status = document.signature_status
        prior_request_id = document.signature_request_id

        # Claim the document so concurrent callers cannot issue a second request.
        try:
            self.documents.update(
                document,
                signature_status=SignatureStatus.PENDING,
                signature_request_id=None,
            )
            self.session.commit()
        except StaleDocumentError as exc:
            self.session.rollback()
            raise PreconditionViolation(
                "Signature request already in progress",
                details={"document_id": str(document_id)},
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise CollaboratorFailure("Failed to update document", details={"document_id": str(document_id)}) from exc
        self.session.refresh(document)

        subject = subject or f"Please sign: {document.name}"
        message = message or f"You have been requested to sign the document: {document.name}"
        if not redirect_url and settings.resolved_public_app_url():
            redirect_url = f"{settings.resolved_public_app_url()}{document_action_url(document.id)}"

        try:
            provider_request = self.provider.create_request(
                document_id=str(document.id),
                title=document.name,
                signer_email=signer_email,
                signer_name=signer_name,
                subject=subject,
                message=message,
                redirect_url=redirect_url,
                file_url=document.file_url,
            )
        except CollaboratorFailure:
            self._release_claim(document, prior_status, prior_request_id)
            raise
        except Exception as exc:
            logger.exception("[SIGNATURE] provider %s failed for document_id=%s", self.provider.name, document_id)
            self._release_claim(document, prior_status, prior_request_id)
            raise ProviderError(
                f"Signing provider call failed: {exc}",
                details={"document_id": str(document_id)},
            ) from exc

        requested_at = datetime.utcnow()
        patch = SignatureMetadata(
            requested_by=requested_by,
            requested_at=requested_at,
            signer_email=signer_email,
            signer_name=signer_name,
            signing_url=provider_request.signing_url,
            signature_id=provider_request.signature_id,
            is_test_mode=getattr(self.provider, "test_mode", None),
            request_history=[provider_request.request_id],
        )

        try:
            self.documents.update(
                document,
                signature_request_id=provider_request.request_id,
                signature_metadata=self.documents.merged_metadata(document, patch),
                signed_at=None,
                last_event_at=None,
            )
            self.audit.record_event(
                "signature_request",
                document_id=document.id,
                recipient_email=signer_email,
                subject=subject,
                content=message,
                details={
                    "signature_request_id": provider_request.request_id,
                    "signing_url": provider_request.signing_url,
                    "document_name": document.name,
                    "provider": self.provider.name,
                },
                commit=False,
            )
            self.notifications.create_notification(
                recipient_id=document.owner_id,
                document_id=document.id,
                event_type="signature_required",
                title="Signature Request Sent",
                message=f"Signature request sent to {signer_name} for {document.name}",
                priority="medium",
                action_url=document_action_url(document.id),
                payload={
                    "document_name": document.name,
                    "signer_name": signer_name,
                    "signer_email": signer_email,
                    "signature_request_id": provider_request.request_id,
                },
                commit=False,
            )
            self.session.commit()
        except (StaleDocumentError, SQLAlchemyError) as exc:
            self.session.rollback()
            logger.error(
                "[SIGNATURE] failed to record request document_id=%s provider_request_id=%s; "
                "provider request was not cancelled",
                document_id,
                provider_request.request_id,
            )
            self._release_claim(document, prior_status, prior_request_id)
            raise CollaboratorFailure(
                "Failed to record signature request",
                details={"document_id": str(document_id), "signature_request_id": provider_request.request_id},
            ) from exc

        logger.info(
            "[SIGNATURE] request sent document_id=%s request_id=%s provider=%s",
            document.id,
            provider_request.request_id,
            self.provider.name,
        )
        return SignatureRequestResult(
            document_id=document.id,
            request_id=provider_request.request_id,
            signing_url=provider_request.signing_url,
            status=SignatureStatus.PENDING,
        )

    def _release_claim(
        self,
        document: Document,
        prior_status: SignatureStatus,
        prior_request_id: str | None,
    ) -> None:
        current = self.documents.reload(document)
        if current is None or current.signature_status != SignatureStatus.PENDING or current.signature_request_id:
            logger.warning("[SIGNATURE] claim on document_id=%s changed before rollback", document.id)
            return
        try:
            self.documents.update(
                current,
                signature_status=prior_status,
                signature_request_id=prior_request_id,
            )
            self.session.commit()
        except (StaleDocumentError, SQLAlchemyError):
            self.session.rollback()
            logger.exception("[SIGNATURE] could not roll back document_id=%s to %s", document.id, prior_status.value)

    # Status ----------------------------------------------------------------
    def check_status(self, document_id: UUID) -> SignatureStatusInfo:
        document = self._get_document(document_id)
        metadata = document.signature_metadata or None
        return SignatureStatusInfo(
            document_id=document.id,
            status=document.signature_status,
            signed_at=document.signed_at,
            signer_info=dict(metadata) if metadata else None,
        )

    def download_signed_document(self, document_id: UUID) -> str:
        document = self._get_document(document_id)
        if document.signature_status != SignatureStatus.SIGNED:
            raise PreconditionViolation(
                "Document is not signed yet",
                details={"document_id": str(document.id), "status": document.signature_status.value},
            )
        reference = self.documents.metadata_of(document).final_copy_reference
        if reference:
            return reference
        if document.signature_request_id:
            # Provider file links expire, so they are fetched on demand and not stored.
            return self.provider.get_files_url(document.signature_request_id)
        if not document.file_url:
            raise PreconditionViolation("Signed copy is not available", details={"document_id": str(document.id)})
        return document.file_url

    def embedded_sign_url(self, document_id: UUID, *, signature_id: str | None = None) -> str:
        """Return a short-lived URL for signing inside the portal instead of by e-mail."""
        document = self._get_document(document_id)
        if document.signature_status != SignatureStatus.PENDING:
            raise PreconditionViolation(
                "Embedded signing is only available for pending requests",
                details={"document_id": str(document.id), "status": document.signature_status.value},
            )
        signature_id = signature_id or self.documents.metadata_of(document).signature_id
        if not signature_id:
            raise PreconditionViolation(
                "No signer signature id is recorded for this request",
                details={"document_id": str(document.id)},
            )
        sign_url = self.provider.create_embedded_sign_url(signature_id)
        logger.info("[SIGNATURE] embedded sign url issued document_id=%s", document.id)
        return sign_url

    # Cancel ----------------------------------------------------------------
    def cancel(self, document_id: UUID, *, cancelled_by: str | None = None) -> SignatureStatusInfo:
        document = self._get_document(document_id)
        if document.signature_status != SignatureStatus.PENDING:
            raise PreconditionViolation(
                "Only pending signature requests can be cancelled",
                details={"document_id": str(document.id), "status": document.signature_status.value},
            )

        request_id = document.signature_request_id
        if request_id:
            self.provider.cancel_request(request_id)

        cancelled_at = datetime.utcnow()
        patch = SignatureMetadata(cancelled_at=cancelled_at)
        try:
            self.documents.update(
                document,
                signature_status=SignatureStatus.CANCELLED,
                signature_metadata=self.documents.merged_metadata(document, patch),
            )
            self.audit.record_event(
                "signature_cancelled",
                document_id=document.id,
                details={"signature_request_id": request_id, "cancelled_by": cancelled_by},
                commit=False,
            )
            self.session.commit()
        except StaleDocumentError as exc:
            self.session.rollback()
            raise PreconditionViolation(
                "Document changed while cancelling",
                details={"document_id": str(document.id)},
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise CollaboratorFailure("Failed to cancel signature request", details={"document_id": str(document.id)}) from exc

        logger.info("[SIGNATURE] request cancelled document_id=%s request_id=%s", document.id, request_id)
        self.session.refresh(document)
        return self.check_status(document.id)
