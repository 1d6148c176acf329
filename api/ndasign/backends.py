"""Signature backends.

A backend optionally prepares vendor-hosted embedded signing for a new
signature request and authenticates the vendor's event callbacks. The
in-app backend does neither: consent, IP and user agent captured at sign time
are the whole record.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from .config import (
    DROPBOX_SIGN_API_KEY,
    DROPBOX_SIGN_CLIENT_ID,
    DROPBOX_SIGN_API_URL,
    ENVIRONMENT,
    HTTP_TIMEOUT_SECONDS,
)
from .errors import ExternalProviderError
from .sealing import render_nda_pdf
from .utils import json_body, send_with_retries

logger = logging.getLogger(__name__)


@dataclass
class EmbeddedSigner:
    signature_id: str
    sign_url: Optional[str] = None


@dataclass
class EmbeddedResult:
    external_request_id: str
    signers: Dict[str, EmbeddedSigner] = field(default_factory=dict)  # keyed by user id


class SignatureBackend:
    name = "base"

    def create_embedded(self, request, signers) -> Optional[EmbeddedResult]:
        raise NotImplementedError

    def verify_event(self, event: dict) -> bool:
        raise NotImplementedError


class MockSignatureBackend(SignatureBackend):
    name = "mock"

    def create_embedded(self, request, signers):
        return None

    def verify_event(self, event):
        # nothing external can call back in in-app mode
        return False


class DropboxSignBackend(SignatureBackend):
    name = "dropbox_sign"

    def __init__(self, api_key: str, client_id: str, base_url: str = DROPBOX_SIGN_API_URL,
                 test_mode: bool = True, timeout: float = HTTP_TIMEOUT_SECONDS,
                 transport: Optional[httpx.BaseTransport] = None):
        self.api_key = api_key
        self.client_id = client_id
        self.test_mode = test_mode
        self._client = httpx.Client(base_url=base_url, auth=(api_key, ""), timeout=timeout, transport=transport)

    def _call(self, method, path, **kwargs) -> dict:
        resp = send_with_retries(self._client, method, path, label="Dropbox Sign", **kwargs)
        if resp.status_code >= 400:
            logger.error("Dropbox Sign %s %s rejected: %s %s", method, path, resp.status_code, resp.text[:500])
            raise ExternalProviderError("Signature provider rejected the request.")
        return json_body(resp, "Dropbox Sign")

    def create_embedded(self, request, signers):
        ordered = sorted(signers, key=lambda s: s.routing_order)
        data = {
            "client_id": self.client_id,
            "title": request.title,
            "subject": "Please sign the Non-Disclosure Agreement",
            "message": "Please review and sign the NDA to proceed with the project.",
            "test_mode": "1" if self.test_mode else "0",
            "metadata[transaction_id]": request.transaction_id,
            "metadata[signature_request_id]": request.id,
        }
        for idx, s in enumerate(ordered):
            data[f"signers[{idx}][email_address]"] = s.email or ""
            data[f"signers[{idx}][name]"] = s.name or s.email or s.user_id
            data[f"signers[{idx}][order]"] = str(idx)
        files = None
        if request.document_url:
            data["file_urls[0]"] = request.document_url
        else:
            pdf = render_nda_pdf(request.title, request.nda_text)
            files = {"files[0]": ("nda.pdf", pdf, "application/pdf")}

        body = self._call("POST", "/signature_request/create_embedded", data=data, files=files)
        vendor_request = body.get("signature_request") or {}
        result = EmbeddedResult(external_request_id=vendor_request.get("signature_request_id"))
        by_email = {(s.email or "").lower(): s for s in ordered}
        for sig in vendor_request.get("signatures") or []:
            order = sig.get("order")
            signer = ordered[order] if isinstance(order, int) and order < len(ordered) else None
            if signer is None:
                signer = by_email.get((sig.get("signer_email_address") or "").lower())
            if signer is None:
                continue
            embedded = self._call("GET", f"/embedded/sign_url/{sig['signature_id']}")
            result.signers[signer.user_id] = EmbeddedSigner(
                signature_id=sig["signature_id"],
                sign_url=(embedded.get("embedded") or {}).get("sign_url"),
            )
        logger.info("Dropbox Sign request %s created for %s", result.external_request_id, request.transaction_id)
        return result

    def verify_event(self, event):
        event_time = str(event.get("event_time") or "")
        event_type = str(event.get("event_type") or "")
        provided = str(event.get("event_hash") or "")
        if not (event_time and event_type and provided):
            return False
        expected = hmac.new(
            self.api_key.encode("utf-8"),
            (event_time + event_type).encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, provided)


def build_signature_backend() -> SignatureBackend:
    if DROPBOX_SIGN_API_KEY and DROPBOX_SIGN_CLIENT_ID:
        return DropboxSignBackend(
            DROPBOX_SIGN_API_KEY,
            DROPBOX_SIGN_CLIENT_ID,
            test_mode=ENVIRONMENT != "production",
        )
    logger.warning("DROPBOX_SIGN_API_KEY not configured. Using in-app signature backend.")
    return MockSignatureBackend()
