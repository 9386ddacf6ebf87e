from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from onboardsign.models.document import SignatureStatus


class _MetadataModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def _merged_fields(self, patch: "_MetadataModel") -> dict[str, Any]:
        merged = self.model_dump()
        for name in type(patch).model_fields:
            value = getattr(patch, name)
            if value is not None:
                merged[name] = value
        return merged


class SignerRecord(_MetadataModel):
    email: str
    signature_id: str | None = None
    name: str | None = None
    status_code: str | None = None
    signed_at: datetime | None = None
    last_viewed_at: datetime | None = None
    last_reminded_at: datetime | None = None
    decline_reason: str | None = None
    error: str | None = None

    def merge(self, patch: SignerRecord) -> SignerRecord:
        return SignerRecord.model_validate(self._merged_fields(patch))


class SignatureMetadata(_MetadataModel):
    """Structured signing metadata stored on the document.

    Updates go through ``merge``: fields present in the patch replace the
    stored value, absent fields are kept, signer sub-records are merged per
    email and request ids accumulate in ``request_history``.
    """

    requested_by: str | None = None
    requested_at: datetime | None = None
    signer_email: str | None = None
    signer_name: str | None = None
    signing_url: str | None = None
    signature_id: str | None = None
    is_test_mode: bool | None = None
    last_viewed_at: datetime | None = None
    last_reminded_at: datetime | None = None
    reassigned_at: datetime | None = None
    signed_at: datetime | None = None
    declined_at: datetime | None = None
    decline_reason: str | None = None
    cancelled_at: datetime | None = None
    expired_at: datetime | None = None
    final_copy_reference: str | None = None
    signers: dict[str, SignerRecord] = Field(default_factory=dict)
    request_history: list[str] = Field(default_factory=list)

    @classmethod
    def from_stored(cls, raw: dict | None) -> SignatureMetadata:
        return cls.model_validate(raw or {})

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def merge(self, patch: SignatureMetadata) -> SignatureMetadata:
        merged = self._merged_fields(patch)

        signers = dict(self.signers)
        for key, record in patch.signers.items():
            signers[key] = signers[key].merge(record) if key in signers else record
        merged["signers"] = signers

        history = list(self.request_history)
        history.extend(item for item in patch.request_history if item not in history)
        merged["request_history"] = history

        return SignatureMetadata.model_validate(merged)


# ---------------------------------------------------------------------------
# Orchestrator API
# ---------------------------------------------------------------------------
class SignatureRequestCreate(BaseModel):
    signer_email: EmailStr
    signer_name: str = Field(min_length=1, max_length=255)
    subject: Optional[str] = Field(default=None, max_length=255)
    message: Optional[str] = None
    redirect_url: Optional[str] = None
    requested_by: Optional[str] = Field(default=None, max_length=64)


class SignatureRequestRead(BaseModel):
    document_id: UUID
    request_id: str
    signing_url: str
    status: SignatureStatus


class SignatureStatusRead(BaseModel):
    document_id: UUID
    status: SignatureStatus
    signed_at: datetime | None = None
    signer_info: dict[str, Any] | None = None


class SignedCopyRead(BaseModel):
    document_id: UUID
    final_copy_reference: str


class EmbeddedSignUrlRead(BaseModel):
    document_id: UUID
    sign_url: str


# ---------------------------------------------------------------------------
# Inbound webhook payload
# ---------------------------------------------------------------------------
class WebhookEventInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_time: str
    event_type: str

    @field_validator("event_time", "event_type", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class WebhookSignature(BaseModel):
    model_config = ConfigDict(extra="ignore")

    signature_id: str | None = None
    signer_email_address: str
    signer_name: str | None = None
    status_code: str | None = None
    signed_at: float | None = None
    last_viewed_at: float | None = None
    last_reminded_at: float | None = None
    reassigned_by: str | None = None
    decline_reason: str | None = None
    error: str | None = None


class WebhookSignatureRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    signature_request_id: str = Field(min_length=1)
    title: str | None = None
    signatures: list[WebhookSignature] = Field(default_factory=list)
    final_copy_uri: str | None = None


class SignatureWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: WebhookEventInfo
    signature_request: WebhookSignatureRequest | None = None


class WebhookAck(BaseModel):
    message: str
    event_type: str
    signature_request_id: str | None = None
    outcome: str
