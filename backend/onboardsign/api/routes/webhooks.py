from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlmodel import Session

from onboardsign.api.deps import get_db
from onboardsign.core.config import settings
from onboardsign.core.logging_setup import logger
from onboardsign.schemas.signature import SignatureWebhookPayload, WebhookAck
from onboardsign.services.signature_events import (
    EventOutcome,
    InboundSignatureEvent,
    SignatureEventProcessor,
    SignatureEventType,
)
from onboardsign.services.webhook_auth import SIGNATURE_HEADER, verify

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


async def _read_payload(request: Request) -> dict[str, Any]:
    """Decode the callback body; the provider posts either raw JSON or a ``json`` form field."""
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        raw = form.get("json")
        if not isinstance(raw, str):
            raise ValueError("Missing 'json' form field")
    else:
        raw = (await request.body()).decode("utf-8")

    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Payload must be a JSON object")
    return data


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/signature", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def signature_webhook(request: Request, session: Session = Depends(get_db)) -> Any:
    """Signing-provider callback.

    The HMAC over ``event_time + event_type`` is checked before any other field
    of the payload is used. Orphaned, duplicate and unrecognized events are
    acknowledged with 200 so the provider stops retrying them.
    """
    try:
        data = await _read_payload(request)
    except ValueError as exc:
        logger.warning("[WEBHOOK] malformed payload: %s", exc)
        return _error(status.HTTP_400_BAD_REQUEST, "Malformed payload")

    event_info = data.get("event")
    if not isinstance(event_info, dict):
        event_info = {}
    event_time = _as_text(event_info.get("event_time"))
    event_type = _as_text(event_info.get("event_type"))

    if not verify(event_time, event_type, request.headers.get(SIGNATURE_HEADER), settings.signature_webhook_secret):
        logger.warning("[WEBHOOK] invalid signature (event_type=%s)", event_type)
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid signature")

    try:
        payload = SignatureWebhookPayload.model_validate(data)
    except ValidationError as exc:
        logger.warning("[WEBHOOK] payload rejected for event_type=%s: %s", event_type, exc.errors())
        return _error(status.HTTP_400_BAD_REQUEST, "Malformed payload")

    if payload.signature_request is None:
        if SignatureEventType.parse(payload.event.event_type) is SignatureEventType.CALLBACK_TEST:
            logger.info("[WEBHOOK] callback test received")
            return WebhookAck(
                message="Webhook processed successfully",
                event_type=payload.event.event_type,
                outcome=EventOutcome.IGNORED.value,
            )
        logger.warning("[WEBHOOK] %s without signature_request", payload.event.event_type)
        return _error(status.HTTP_400_BAD_REQUEST, "Malformed payload")

    event = InboundSignatureEvent.from_payload(payload)
    logger.info(
        "[WEBHOOK] received %s for request_id=%s",
        event.event_type,
        event.signature_request_id,
    )

    try:
        result = await run_in_threadpool(SignatureEventProcessor(session).process, event)
    except Exception:  # noqa: BLE001
        logger.exception(
            "[WEBHOOK] unexpected failure processing %s for request_id=%s",
            event.event_type,
            event.signature_request_id,
        )
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    return WebhookAck(
        message="Webhook processed successfully",
        event_type=result.event_type,
        signature_request_id=result.signature_request_id,
        outcome=result.outcome.value,
    )
