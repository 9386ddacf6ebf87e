from __future__ import annotations

from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from onboardsign.api.deps import get_db, get_provider
from onboardsign.core.logging_setup import logger
from onboardsign.schemas.audit import AuditRecordList, AuditRecordRead
from onboardsign.schemas.signature import (
    EmbeddedSignUrlRead,
    SignatureRequestCreate,
    SignatureRequestRead,
    SignatureStatusRead,
    SignedCopyRead,
)
from onboardsign.services.audit import AuditService
from onboardsign.services.errors import (
    CollaboratorFailure,
    DocumentNotFoundError,
    InvalidSignerError,
    PreconditionViolation,
    SignatureError,
)
from onboardsign.services.signature import SignatureRequestService, SignatureStatusInfo
from onboardsign.services.signature_provider import SignatureProvider

router = APIRouter(prefix="/documents", tags=["signatures"])


def _service(session: Session, provider: SignatureProvider) -> SignatureRequestService:
    return SignatureRequestService(session, provider=provider)


def _raise_http(exc: SignatureError) -> NoReturn:
    if isinstance(exc, DocumentNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, PreconditionViolation):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, InvalidSignerError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, CollaboratorFailure):
        logger.error("[SIGNATURE] %s details=%s", exc, exc.details)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _status_schema(info: SignatureStatusInfo) -> SignatureStatusRead:
    return SignatureStatusRead(
        document_id=info.document_id,
        status=info.status,
        signed_at=info.signed_at,
        signer_info=info.signer_info,
    )


@router.post(
    "/{document_id}/signature-requests",
    response_model=SignatureRequestRead,
    status_code=status.HTTP_201_CREATED,
)
def request_signature(
    document_id: UUID,
    payload: SignatureRequestCreate,
    session: Session = Depends(get_db),
    provider: SignatureProvider = Depends(get_provider),
) -> SignatureRequestRead:
    service = _service(session, provider)
    try:
        result = service.request_signature(
            document_id,
            signer_email=payload.signer_email,
            signer_name=payload.signer_name,
            subject=payload.subject,
            message=payload.message,
            redirect_url=payload.redirect_url,
            requested_by=payload.requested_by,
        )
    except SignatureError as exc:
        _raise_http(exc)
    return SignatureRequestRead(
        document_id=result.document_id,
        request_id=result.request_id,
        signing_url=result.signing_url,
        status=result.status,
    )


@router.get("/{document_id}/signature-status", response_model=SignatureStatusRead)
def get_signature_status(
    document_id: UUID,
    session: Session = Depends(get_db),
    provider: SignatureProvider = Depends(get_provider),
) -> SignatureStatusRead:
    try:
        info = _service(session, provider).check_status(document_id)
    except SignatureError as exc:
        _raise_http(exc)
    return _status_schema(info)


@router.post("/{document_id}/signature-requests/cancel", response_model=SignatureStatusRead)
def cancel_signature_request(
    document_id: UUID,
    cancelled_by: str | None = Query(default=None, max_length=64),
    session: Session = Depends(get_db),
    provider: SignatureProvider = Depends(get_provider),
) -> SignatureStatusRead:
    try:
        info = _service(session, provider).cancel(document_id, cancelled_by=cancelled_by)
    except SignatureError as exc:
        _raise_http(exc)
    return _status_schema(info)


@router.get("/{document_id}/signed-copy", response_model=SignedCopyRead)
def get_signed_copy(
    document_id: UUID,
    session: Session = Depends(get_db),
    provider: SignatureProvider = Depends(get_provider),
) -> SignedCopyRead:
    try:
        reference = _service(session, provider).download_signed_document(document_id)
    except SignatureError as exc:
        _raise_http(exc)
    return SignedCopyRead(document_id=document_id, final_copy_reference=reference)


@router.post("/{document_id}/embedded-sign-url", response_model=EmbeddedSignUrlRead)
def create_embedded_sign_url(
    document_id: UUID,
    signature_id: str | None = Query(default=None, max_length=64),
    session: Session = Depends(get_db),
    provider: SignatureProvider = Depends(get_provider),
) -> EmbeddedSignUrlRead:
    try:
        sign_url = _service(session, provider).embedded_sign_url(document_id, signature_id=signature_id)
    except SignatureError as exc:
        _raise_http(exc)
    return EmbeddedSignUrlRead(document_id=document_id, sign_url=sign_url)


@router.get("/{document_id}/signature-audit", response_model=AuditRecordList)
def list_signature_audit(
    document_id: UUID,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_db),
) -> AuditRecordList:
    items, total = AuditService(session).list_events(document_id=document_id, page=page, page_size=page_size)
    return AuditRecordList(
        items=[AuditRecordRead.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )
