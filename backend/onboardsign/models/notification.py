from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from onboardsign.models.base import TimestampedModel, UUIDModel


class UserNotification(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "user_notifications"

    document_id: UUID = Field(foreign_key="documents.id", index=True)
    recipient_id: str = Field(index=True, max_length=64)
    event_type: str = Field(max_length=64)
    title: str
    message: str
    priority: str = Field(default="medium", max_length=16)
    action_url: str | None = Field(default=None)
    payload: dict | None = Field(default=None, sa_type=JSON)
    read_at: datetime | None = Field(default=None, index=True)
