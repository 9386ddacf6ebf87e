from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from onboardsign.core.config import settings
from onboardsign.core.logging_setup import logger
from onboardsign.services.errors import ProviderError


@dataclass
class ProviderRequest:
    request_id: str
    signing_url: str
    signature_id: str | None = None
    raw: Dict[str, Any] = field(default_factory=dict)


class SignatureProvider(Protocol):
    name: str

    def create_request(
        self,
        *,
        document_id: str,
        title: str,
        signer_email: str,
        signer_name: str,
        subject: str,
        message: str,
        redirect_url: str | None = None,
        file_url: str | None = None,
    ) -> ProviderRequest:
        ...

    def cancel_request(self, request_id: str) -> None:
        ...

    def get_files_url(self, request_id: str) -> str:
        ...

    def create_embedded_sign_url(self, signature_id: str) -> str:
        ...


class SimulatedSignProvider:
    """Stand-in used when no Dropbox Sign API key is configured."""

    name = "simulated"
    test_mode = True

    def create_request(
        self,
        *,
        document_id: str,
        title: str,
        signer_email: str,
        signer_name: str,
        subject: str,
        message: str,
        redirect_url: str | None = None,
        file_url: str | None = None,
    ) -> ProviderRequest:
        request_id = f"sig_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
        return ProviderRequest(
            request_id=request_id,
            signing_url=f"https://app.hellosign.com/sign/{request_id}",
            signature_id=f"sim_{secrets.token_hex(8)}",
            raw={"document_id": document_id, "test_mode": True},
        )

    def cancel_request(self, request_id: str) -> None:
        logger.info("[SIGNATURE] simulated cancel request_id=%s", request_id)

    def get_files_url(self, request_id: str) -> str:
        return f"signed-document-{request_id}"

    def create_embedded_sign_url(self, signature_id: str) -> str:
        return f"https://app.hellosign.com/editor/embeddedSign?signature_id={signature_id}"


class DropboxSignClient:
    """HTTP client for the Dropbox Sign (HelloSign) v3 API."""

    name = "dropbox_sign"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        client_id: str | None = None,
        test_mode: bool | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        if not api_key:
            raise ProviderError("Dropbox Sign API key not configured")
        self._api_key = api_key
        self._base_url = (base_url or settings.dropbox_sign_base_url).rstrip("/")
        self._client_id = client_id
        self.test_mode = settings.dropbox_sign_test_mode if test_mode is None else test_mode
        self._timeout = timeout_seconds or settings.signature_provider_timeout_seconds or 15.0

    def _request(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = httpx.request(
                method,
                url,
                data=data,
                params=params,
                auth=(self._api_key, ""),
                timeout=self._timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ProviderError(f"Failed to reach Dropbox Sign: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"error": {"error_msg": response.text}}
            error = payload.get("error") if isinstance(payload, dict) else None
            message = (error or {}).get("error_msg") if isinstance(error, dict) else None
            raise ProviderError(
                f"Dropbox Sign API error: {message or response.reason_phrase}",
                details=payload if isinstance(payload, dict) else {},
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("Invalid response from Dropbox Sign") from exc
        if not isinstance(payload, dict):
            raise ProviderError(
                "Invalid response from Dropbox Sign: expected a JSON object",
                status_code=response.status_code,
            )
        return payload

    def create_request(
        self,
        *,
        document_id: str,
        title: str,
        signer_email: str,
        signer_name: str,
        subject: str,
        message: str,
        redirect_url: str | None = None,
        file_url: str | None = None,
    ) -> ProviderRequest:
        form: dict[str, Any] = {
            "title": title,
            "subject": subject,
            "message": message,
            "signers[0][email_address]": signer_email,
            "signers[0][name]": signer_name,
            "signers[0][order]": "0",
            "metadata[document_id]": document_id,
        }
        if self._client_id:
            form["client_id"] = self._client_id
        if self.test_mode:
            form["test_mode"] = "1"
        if file_url:
            form["file_url[0]"] = file_url
        if redirect_url:
            form["signing_redirect_url"] = redirect_url

        payload = self._request("POST", "/signature_request/send", data=form)
        signature_request = payload.get("signature_request")
        if not isinstance(signature_request, dict) or not signature_request.get("signature_request_id"):
            raise ProviderError("Dropbox Sign response without signature_request_id", details=payload)

        request_id = signature_request["signature_request_id"]
        signatures = signature_request.get("signatures") or []
        first_signer = signatures[0] if signatures and isinstance(signatures[0], dict) else {}
        signing_url = signature_request.get("signing_url") or signature_request.get("details_url") or ""
        return ProviderRequest(
            request_id=request_id,
            signing_url=signing_url,
            signature_id=first_signer.get("signature_id"),
            raw=signature_request,
        )

    def cancel_request(self, request_id: str) -> None:
        self._request("POST", f"/signature_request/cancel/{request_id}")

    def get_files_url(self, request_id: str) -> str:
        payload = self._request("GET", f"/signature_request/files/{request_id}", params={"get_url": "1"})
        file_url = payload.get("file_url")
        if not file_url:
            raise ProviderError("Dropbox Sign response without file_url", details=payload)
        return file_url

    def create_embedded_sign_url(self, signature_id: str) -> str:
        payload = self._request("POST", f"/embedded/sign_url/{signature_id}")
        embedded = payload.get("embedded")
        sign_url = embedded.get("sign_url") if isinstance(embedded, dict) else None
        if not sign_url:
            raise ProviderError("Dropbox Sign response without sign_url", details=payload)
        return sign_url


def get_signature_provider(api_key: Optional[str] = None) -> SignatureProvider:
    secret = settings.dropbox_sign_api_key
    key = api_key or (secret.get_secret_value() if secret else None)
    if key:
        return DropboxSignClient(
            key,
            base_url=settings.dropbox_sign_base_url,
            client_id=settings.dropbox_sign_client_id,
            test_mode=settings.dropbox_sign_test_mode,
            timeout_seconds=settings.signature_provider_timeout_seconds,
        )
    return SimulatedSignProvider()
