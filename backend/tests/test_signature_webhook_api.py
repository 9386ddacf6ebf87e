from __future__ import annotations

import json

from fastapi import status
from sqlmodel import select

from onboardsign.core.config import settings
from onboardsign.models.audit import AuditRecord
from onboardsign.models.document import Document, SignatureStatus
from onboardsign.models.notification import UserNotification
from onboardsign.models.signature_event import SignatureEventReceipt
from onboardsign.services.webhook_auth import SIGNATURE_HEADER
from tests.conftest import build_webhook_payload, make_document, make_pending_document, signed_headers

WEBHOOK_URL = "/webhooks/signature"
T0 = 1_700_000_000


def _post(client, payload, headers=None):
    headers = signed_headers(payload) if headers is None else headers
    return client.post(
        WEBHOOK_URL,
        content=json.dumps(payload),
        headers={**headers, "Content-Type": "application/json"},
    )


def _counts(session) -> tuple[int, int]:
    session.expire_all()
    audit = len(session.exec(select(AuditRecord)).all())
    notifications = len(session.exec(select(UserNotification)).all())
    return audit, notifications


def test_request_then_complete_through_webhooks(client, db_session):
    document = make_document(db_session)

    resp = client.post(
        f"{settings.api_v1_str}/documents/{document.id}/signature-requests",
        json={"signer_email": "a@x.com", "signer_name": "A"},
    )
    assert resp.status_code == status.HTTP_201_CREATED, resp.text
    request_id = resp.json()["request_id"]
    assert resp.json()["status"] == "pending"

    viewed = build_webhook_payload(
        "signature_request_viewed",
        request_id,
        event_time=str(T0),
        signatures=[{"signer_email_address": "a@x.com", "signer_name": "A", "last_viewed_at": T0}],
    )
    resp = _post(client, viewed)
    assert resp.status_code == status.HTTP_200_OK, resp.text
    assert resp.json()["outcome"] == "applied"

    status_resp = client.get(f"{settings.api_v1_str}/documents/{document.id}/signature-status")
    assert status_resp.json()["status"] == "pending"
    assert status_resp.json()["signer_info"]["lastViewedAt"]

    completed = build_webhook_payload(
        "signature_request_all_signed",
        request_id,
        event_time=str(T0 + 60),
        signatures=[{"signer_email_address": "a@x.com", "status_code": "signed", "signed_at": T0 + 50}],
        final_copy_uri="https://files.example.com/final.pdf",
    )
    resp = _post(client, completed)
    assert resp.status_code == status.HTTP_200_OK, resp.text
    body = resp.json()
    assert body["message"] == "Webhook processed successfully"
    assert body["event_type"] == "signature_request_all_signed"
    assert body["signature_request_id"] == request_id

    status_resp = client.get(f"{settings.api_v1_str}/documents/{document.id}/signature-status")
    assert status_resp.json()["status"] == "signed"
    assert status_resp.json()["signed_at"]

    copy_resp = client.get(f"{settings.api_v1_str}/documents/{document.id}/signed-copy")
    assert copy_resp.status_code == status.HTTP_200_OK
    assert copy_resp.json()["final_copy_reference"] == "https://files.example.com/final.pdf"

    db_session.expire_all()
    record_types = sorted(record.record_type for record in db_session.exec(select(AuditRecord)).all())
    assert record_types == ["signature_completed", "signature_request"]
    notification_types = sorted(item.event_type for item in db_session.exec(select(UserNotification)).all())
    assert notification_types == ["signature_completed", "signature_required"]


def test_duplicate_delivery_records_completion_once(client, db_session):
    make_pending_document(db_session, request_id="req_dup")
    payload = build_webhook_payload("signature_request_all_signed", "req_dup", event_time=str(T0))

    first = _post(client, payload)
    second = _post(client, payload)

    assert first.status_code == status.HTTP_200_OK
    assert second.status_code == status.HTTP_200_OK
    assert first.json()["outcome"] == "applied"
    assert second.json()["outcome"] == "duplicate"
    assert _counts(db_session) == (1, 1)
    assert len(db_session.exec(select(SignatureEventReceipt)).all()) == 1


def test_signature_over_other_event_type_is_rejected(client, db_session, webhook_secret):
    document = make_pending_document(db_session, request_id="req_forged")
    payload = build_webhook_payload("signature_request_all_signed", "req_forged", event_time=str(T0))
    forged = build_webhook_payload("signature_request_viewed", "req_forged", event_time=str(T0))

    resp = _post(client, payload, headers=signed_headers(forged, webhook_secret))

    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json() == {"error": "Invalid signature"}
    db_session.expire_all()
    stored = db_session.get(Document, document.id)
    assert stored.signature_status == SignatureStatus.PENDING
    assert stored.version == document.version
    assert _counts(db_session) == (0, 0)


def test_missing_signature_header_is_rejected(client, db_session):
    make_pending_document(db_session, request_id="req_nosig")
    payload = build_webhook_payload("signature_request_all_signed", "req_nosig")

    resp = _post(client, payload, headers={})

    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert _counts(db_session) == (0, 0)


def test_signature_with_wrong_secret_is_rejected(client, db_session):
    make_pending_document(db_session, request_id="req_secret")
    payload = build_webhook_payload("signature_request_all_signed", "req_secret")

    resp = _post(client, payload, headers=signed_headers(payload, "another-secret"))

    assert resp.status_code == status.HTTP_401_UNAUTHORIZED


def test_unconfigured_secret_rejects_everything(client, db_session, monkeypatch):
    monkeypatch.setattr(settings, "signature_webhook_secret", None)
    make_pending_document(db_session, request_id="req_unset")
    payload = build_webhook_payload("signature_request_all_signed", "req_unset")

    resp = _post(client, payload)

    assert resp.status_code == status.HTTP_401_UNAUTHORIZED


def test_malformed_body_is_rejected(client):
    resp = client.post(
        WEBHOOK_URL,
        content="{not json",
        headers={"Content-Type": "application/json", SIGNATURE_HEADER: "deadbeef"},
    )

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert resp.json() == {"error": "Malformed payload"}


def test_authenticated_payload_missing_fields_is_rejected(client):
    payload = build_webhook_payload("signature_request_viewed", "req_x", event_time=str(T0))
    del payload["signature_request"]["signature_request_id"]

    resp = _post(client, payload)

    assert resp.status_code == status.HTTP_400_BAD_REQUEST


def test_form_encoded_delivery_is_accepted(client, db_session):
    make_pending_document(db_session, request_id="req_form")
    payload = build_webhook_payload("signature_request_declined", "req_form", event_time=str(T0))

    resp = client.post(WEBHOOK_URL, data={"json": json.dumps(payload)}, headers=signed_headers(payload))

    assert resp.status_code == status.HTTP_200_OK, resp.text
    assert resp.json()["outcome"] == "applied"
    db_session.expire_all()
    stored = db_session.exec(select(Document).where(Document.signature_request_id == "req_form")).one()
    assert stored.signature_status == SignatureStatus.DECLINED


def test_orphaned_event_is_acknowledged(client, db_session):
    payload = build_webhook_payload("signature_request_all_signed", "req_nobody")

    resp = _post(client, payload)

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["outcome"] == "orphaned"
    assert _counts(db_session) == (0, 0)


def test_callback_test_is_acknowledged(client):
    payload = {"event": {"event_time": str(T0), "event_type": "callback_test", "event_hash": "x"}}

    resp = _post(client, payload)

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["event_type"] == "callback_test"
    assert resp.json()["signature_request_id"] is None


def test_late_event_on_signed_document_is_acknowledged(client, db_session):
    document = make_pending_document(db_session, request_id="req_late", signature_status=SignatureStatus.SIGNED)
    payload = build_webhook_payload("signature_request_declined", "req_late")

    resp = _post(client, payload)

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["outcome"] == "terminal"
    db_session.expire_all()
    assert db_session.get(Document, document.id).signature_status == SignatureStatus.SIGNED


def test_unexpected_processing_failure_returns_500(client, db_session, monkeypatch):
    from onboardsign.services import signature_events

    make_pending_document(db_session, request_id="req_boom")

    def explode(self, event):
        raise RuntimeError("boom")

    monkeypatch.setattr(signature_events.SignatureEventProcessor, "process", explode)
    payload = build_webhook_payload("signature_request_all_signed", "req_boom")

    resp = _post(client, payload)

    assert resp.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert resp.json() == {"error": "Internal server error"}
