from __future__ import annotations

from typing import Any, Dict, Optional


class SignatureError(RuntimeError):
    """Base error for the document e-signature flow."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = details or {}


class DocumentNotFoundError(SignatureError):
    pass


class PreconditionViolation(SignatureError):
    """The document is not in a state that allows the requested operation."""


class InvalidSignerError(SignatureError):
    pass


class CollaboratorFailure(SignatureError):
    """A store or external service failed while the operation was in flight."""


class ProviderError(CollaboratorFailure):
    """The signing provider rejected the call or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code


class StaleDocumentError(SignatureError):
    """A conditional document update lost the race against another writer."""
