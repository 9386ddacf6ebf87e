"""Authentication of inbound signing-provider webhooks.

The provider signs every callback with ``HMAC-SHA256(secret, event_time + event_type)``
and sends the lowercase hex digest in the ``X-HelloSign-Signature`` header.
"""

from __future__ import annotations

import hashlib
import hmac

from pydantic import SecretStr

SIGNATURE_HEADER = "X-HelloSign-Signature"


def compute_signature(event_time: str, event_type: str, shared_secret: str) -> str:
    signed_payload = f"{event_time}{event_type}".encode("utf-8")
    return hmac.new(shared_secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify(
    event_time: str | None,
    event_type: str | None,
    supplied_signature: str | None,
    shared_secret: str | SecretStr | None,
) -> bool:
    """Return True only when the supplied signature matches; never raises."""
    if isinstance(shared_secret, SecretStr):
        shared_secret = shared_secret.get_secret_value()
    if not shared_secret or not supplied_signature:
        return False
    if event_time is None or event_type is None:
        return False
    try:
        expected = compute_signature(str(event_time), str(event_type), shared_secret)
        return hmac.compare_digest(expected.encode("ascii"), supplied_signature.encode("ascii"))
    except (AttributeError, TypeError, ValueError, UnicodeError):
        return False
