from __future__ import annotations

from uuid import UUID

from sqlmodel import Session, select

from onboardsign.models.notification import UserNotification


class UserNotificationService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create_notification(
        self,
        *,
        recipient_id: str,
        document_id: UUID,
        event_type: str,
        title: str,
        message: str,
        priority: str = "medium",
        action_url: str | None = None,
        payload: dict | None = None,
        commit: bool = True,
    ) -> UserNotification:
        notification = UserNotification(
            recipient_id=recipient_id,
            document_id=document_id,
            event_type=event_type,
            title=title,
            message=message,
            priority=priority,
            action_url=action_url,
            payload=payload,
        )
        self.session.add(notification)
        if commit:
            self.session.commit()
        return notification

    def list_for_document(self, document_id: UUID) -> list[UserNotification]:
        return list(
            self.session.exec(
                select(UserNotification)
                .where(UserNotification.document_id == document_id)
                .order_by(UserNotification.created_at)
            ).all()
        )
