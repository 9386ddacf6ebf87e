from datetime import datetime

from onboardsign.schemas.signature import SignatureMetadata, SignatureWebhookPayload, SignerRecord


def test_merge_keeps_existing_fields_and_adds_new_ones() -> None:
    requested_at = datetime(2024, 1, 1, 9, 0, 0)
    viewed_at = datetime(2024, 1, 2, 10, 30, 0)
    current = SignatureMetadata(
        requested_at=requested_at,
        signer_email="a@x.com",
        signing_url="https://sign.example.com/1",
    )

    merged = current.merge(SignatureMetadata(last_viewed_at=viewed_at))

    assert merged.requested_at == requested_at
    assert merged.signer_email == "a@x.com"
    assert merged.signing_url == "https://sign.example.com/1"
    assert merged.last_viewed_at == viewed_at


def test_merge_combines_signer_records_per_email() -> None:
    viewed_at = datetime(2024, 1, 2, 10, 0, 0)
    signed_at = datetime(2024, 1, 3, 8, 0, 0)
    current = SignatureMetadata(
        signers={"a@x.com": SignerRecord(email="a@x.com", name="A", last_viewed_at=viewed_at)}
    )
    patch = SignatureMetadata(
        signers={
            "a@x.com": SignerRecord(email="a@x.com", status_code="signed", signed_at=signed_at),
            "b@x.com": SignerRecord(email="b@x.com", name="B", status_code="awaiting_signature"),
        }
    )

    merged = current.merge(patch)

    signer_a = merged.signers["a@x.com"]
    assert signer_a.name == "A"
    assert signer_a.last_viewed_at == viewed_at
    assert signer_a.signed_at == signed_at
    assert signer_a.status_code == "signed"
    assert merged.signers["b@x.com"].name == "B"


def test_merge_appends_request_history_without_duplicates() -> None:
    current = SignatureMetadata(request_history=["req_1"])
    merged = current.merge(SignatureMetadata(request_history=["req_1", "req_2"]))
    assert merged.request_history == ["req_1", "req_2"]


def test_stored_form_uses_camel_case_and_round_trips() -> None:
    metadata = SignatureMetadata(
        last_viewed_at=datetime(2024, 1, 2, 10, 0, 0),
        final_copy_reference="https://files.example.com/final.pdf",
    )

    stored = metadata.to_stored()

    assert stored["lastViewedAt"].startswith("2024-01-02T10:00:00")
    assert stored["finalCopyReference"] == "https://files.example.com/final.pdf"
    assert "signedAt" not in stored
    assert SignatureMetadata.from_stored(stored) == metadata


def test_from_stored_tolerates_empty_and_unknown_keys() -> None:
    assert SignatureMetadata.from_stored(None) == SignatureMetadata()
    assert SignatureMetadata.from_stored({"legacyField": 1}).signer_email is None


def test_webhook_payload_keeps_only_consumed_fields() -> None:
    payload = SignatureWebhookPayload.model_validate(
        {
            "event": {"event_time": 1700000000, "event_type": "signature_request_all_signed", "event_hash": "abc"},
            "signature_request": {
                "signature_request_id": "req_1",
                "is_complete": True,
                "is_declined": False,
                "signatures": [],
            },
        }
    )

    dumped = payload.model_dump()
    assert set(dumped["event"]) == {"event_time", "event_type"}
    assert "is_complete" not in dumped["signature_request"]
    assert "is_declined" not in dumped["signature_request"]
