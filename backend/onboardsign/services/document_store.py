from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from onboardsign.models.document import Document
from onboardsign.schemas.signature import SignatureMetadata
from onboardsign.services.errors import StaleDocumentError


class DocumentStore:
    """Signature-related reads and optimistic-concurrency writes on documents."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, document_id: UUID) -> Document | None:
        return self.session.get(Document, document_id)

    def get_by_request_id(self, request_id: str) -> Document | None:
        if not request_id:
            return None
        return self.session.exec(
            select(Document).where(Document.signature_request_id == request_id)
        ).first()

    def reload(self, document: Document) -> Document | None:
        self.session.expire_all()
        return self.get(document.id)

    @staticmethod
    def metadata_of(document: Document) -> SignatureMetadata:
        return SignatureMetadata.from_stored(document.signature_metadata)

    def merged_metadata(self, document: Document, patch: SignatureMetadata) -> dict[str, Any]:
        return self.metadata_of(document).merge(patch).to_stored()

    def update(self, document: Document, **changes: Any) -> None:
        """Write ``changes`` only if nobody touched the document since it was read.

        Runs inside the caller's transaction; the caller commits or rolls back.
        """
        expected_version = document.version
        values = dict(changes)
        values["version"] = expected_version + 1
        values["updated_at"] = datetime.utcnow()

        result = self.session.exec(  # type: ignore[call-overload]
            update(Document)
            .where(Document.id == document.id)
            .where(Document.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleDocumentError(
                "Document changed concurrently",
                details={"document_id": str(document.id), "expected_version": expected_version},
            )
