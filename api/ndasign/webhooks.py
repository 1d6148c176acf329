"""Dropbox Sign event callbacks.

Events are authenticated by the backend, correlated to a local request by the
vendor's signature_request_id (or the transaction_id we put in the request
metadata), and replayed through the same conditional signer/request updates
the in-app flow uses. Redelivered or out-of-order events therefore converge on
the same final state.
"""
import json
import logging
from datetime import datetime
from typing import Optional

from .backends import SignatureBackend
from .repository import SignatureRepository
from .workflow import NdaWorkflow

logger = logging.getLogger(__name__)

ACK_BODY = "Hello API Event Received"
SIGNED = "signature_request_signed"
ALL_SIGNED = "signature_request_all_signed"
CALLBACK_TEST = "callback_test"


class InvalidWebhook(Exception):
    pass


def parse_payload(raw: Optional[str]) -> dict:
    if not raw:
        raise InvalidWebhook("empty payload")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidWebhook("payload is not JSON") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("event"), dict):
        raise InvalidWebhook("payload has no event")
    return payload


def _signed_at(sig: dict):
    value = sig.get("signed_at")
    if isinstance(value, (int, float)):
        return datetime.utcfromtimestamp(value)
    return None


class WebhookProcessor:
    def __init__(self, repository: SignatureRepository, workflow: NdaWorkflow, backend: SignatureBackend):
        self.repository = repository
        self.workflow = workflow
        self.backend = backend

    def _find_request(self, vendor_request: dict):
        external_id = vendor_request.get("signature_request_id")
        request = self.repository.get_by_external_id(external_id) if external_id else None
        if request is None:
            transaction_id = (vendor_request.get("metadata") or {}).get("transaction_id")
            if transaction_id:
                request = self.repository.get_by_transaction(transaction_id)
        return request

    def handle(self, payload: dict) -> str:
        """Apply one event; returns a short outcome label for logging and tests."""
        event = payload.get("event") or {}
        if not self.backend.verify_event(event):
            raise InvalidWebhook("event hash mismatch")
        event_type = event.get("event_type")
        if event_type == CALLBACK_TEST:
            return "test"
        if event_type not in (SIGNED, ALL_SIGNED):
            return "ignored"

        vendor_request = payload.get("signature_request") or {}
        request = self._find_request(vendor_request)
        if request is None:
            logger.info("webhook %s for unknown request %s", event_type, vendor_request.get("signature_request_id"))
            return "unknown"

        signers = self.repository.signers(request.id)
        by_signature = {s.external_signature_id: s for s in signers if s.external_signature_id}
        by_email = {(s.email or "").lower(): s for s in signers if s.email}
        reported = {}
        for sig in vendor_request.get("signatures") or []:
            signer = by_signature.get(sig.get("signature_id")) or by_email.get((sig.get("signer_email_address") or "").lower())
            if signer is None:
                continue
            if event_type == ALL_SIGNED or sig.get("status_code") == "signed":
                reported[signer.id] = (signer, _signed_at(sig))
        if event_type == ALL_SIGNED:
            for signer in signers:
                reported.setdefault(signer.id, (signer, None))

        applied = self.workflow.record_vendor_signatures(
            request, list(reported.values()), complete=event_type == ALL_SIGNED
        )
        self.repository.append_event(request.id, "vendor", "webhook", {"event_type": event_type, "applied": applied})
        self.repository.session.commit()
        return "applied" if applied else "noop"
