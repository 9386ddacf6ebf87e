from __future__ import annotations

import os
import time
import uuid
from typing import Any

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr
from sqlmodel import Session, SQLModel, create_engine

from onboardsign.api.deps import get_provider
from onboardsign.core.config import settings
from onboardsign.db import session as db_session_module
from onboardsign.db.session import get_session
from onboardsign.main import app
from onboardsign.models.document import Document, SignatureStatus
from onboardsign.services.signature_provider import ProviderRequest
from onboardsign.services.webhook_auth import SIGNATURE_HEADER, compute_signature

WEBHOOK_SECRET = "whsec_testsecret"


class FakeSignProvider:
    name = "fake"
    test_mode = True

    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.cancelled: list[str] = []
        self.fail_create: Exception | None = None
        self.fail_cancel: Exception | None = None
        self.files_requested: list[str] = []
        self.embedded_requested: list[str] = []

    def create_request(self, **kwargs: Any) -> ProviderRequest:
        if self.fail_create:
            raise self.fail_create
        request_id = f"req_{uuid.uuid4().hex[:16]}"
        self.created.append({**kwargs, "request_id": request_id})
        return ProviderRequest(
            request_id=request_id,
            signing_url=f"https://sign.example.com/{request_id}",
            signature_id=f"sig_{request_id}",
        )

    def cancel_request(self, request_id: str) -> None:
        if self.fail_cancel:
            raise self.fail_cancel
        self.cancelled.append(request_id)

    def get_files_url(self, request_id: str) -> str:
        self.files_requested.append(request_id)
        return f"https://files.sign.example.com/{request_id}.pdf"

    def create_embedded_sign_url(self, signature_id: str) -> str:
        self.embedded_requested.append(signature_id)
        return f"https://sign.example.com/embedded/{signature_id}"


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    connect_args = {"check_same_thread": False} if test_database_url.startswith("sqlite") else {}
    engine = create_engine(test_database_url, connect_args=connect_args)
    SQLModel.metadata.create_all(bind=engine)

    original_engine = db_session_module.engine
    db_session_module.engine = engine

    def override_dependency():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_dependency

    yield engine

    app.dependency_overrides.pop(get_session, None)
    db_session_module.engine = original_engine
    SQLModel.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


@pytest.fixture()
def provider() -> FakeSignProvider:
    return FakeSignProvider()


@pytest.fixture()
def webhook_secret(monkeypatch) -> str:
    monkeypatch.setattr(settings, "signature_webhook_secret", SecretStr(WEBHOOK_SECRET))
    return WEBHOOK_SECRET


@pytest.fixture()
def client(db_engine, provider, webhook_secret) -> TestClient:
    app.dependency_overrides[get_provider] = lambda: provider
    yield TestClient(app)
    app.dependency_overrides.pop(get_provider, None)


def make_document(session: Session, **overrides: Any) -> Document:
    values: dict[str, Any] = {
        "name": "Offer Letter",
        "owner_id": "owner-1",
        "owner_email": "owner@example.com",
        "file_url": "https://files.example.com/offer-letter.pdf",
        "signature_required": True,
        "signature_status": SignatureStatus.NOT_SENT,
    }
    values.update(overrides)
    document = Document(**values)
    session.add(document)
    session.commit()
    session.refresh(document)
    return document


def make_pending_document(session: Session, request_id: str | None = None, **overrides: Any) -> Document:
    request_id = request_id or f"req_{uuid.uuid4().hex[:16]}"
    overrides.setdefault(
        "signature_metadata",
        {"signerEmail": "a@x.com", "signerName": "A", "requestHistory": [request_id]},
    )
    overrides.setdefault("signature_status", SignatureStatus.PENDING)
    return make_document(session, signature_request_id=request_id, **overrides)


def build_webhook_payload(
    event_type: str,
    request_id: str,
    *,
    event_time: str | None = None,
    signatures: list[dict[str, Any]] | None = None,
    final_copy_uri: str | None = None,
) -> dict[str, Any]:
    signature_request: dict[str, Any] = {
        "signature_request_id": request_id,
        "title": "Offer Letter",
        "signatures": signatures
        if signatures is not None
        else [{"signer_email_address": "a@x.com", "signer_name": "A", "status_code": "awaiting_signature"}],
    }
    if final_copy_uri:
        signature_request["final_copy_uri"] = final_copy_uri
    return {
        "event": {
            "event_time": event_time or str(int(time.time())),
            "event_type": event_type,
            "event_hash": "ignored",
        },
        "signature_request": signature_request,
    }


def signed_headers(payload: dict[str, Any], secret: str = WEBHOOK_SECRET) -> dict[str, str]:
    event = payload["event"]
    return {SIGNATURE_HEADER: compute_signature(str(event["event_time"]), str(event["event_type"]), secret)}
