from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from onboardsign.models.audit import AuditRecord


class AuditService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record_event(
        self,
        record_type: str,
        document_id: UUID | None = None,
        recipient_email: str | None = None,
        subject: str | None = None,
        content: str | None = None,
        details: dict | None = None,
        commit: bool = True,
    ) -> AuditRecord:
        record = AuditRecord(
            document_id=document_id,
            record_type=record_type,
            recipient_email=recipient_email,
            subject=subject,
            content=content,
            details=details or {},
        )
        self.session.add(record)
        if commit:
            self.session.commit()
        return record

    def list_events(
        self,
        document_id: Optional[UUID] = None,
        record_type: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[AuditRecord], int]:
        query = select(AuditRecord)
        if document_id:
            query = query.where(AuditRecord.document_id == document_id)
        if record_type:
            query = query.where(AuditRecord.record_type == record_type)

        total = self.session.exec(
            select(func.count()).select_from(query.subquery())
        ).one()

        items = self.session.exec(
            query.order_by(AuditRecord.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(items), total
