"""NDA signing state machine: NoRequest -> pending -> completed.

A transaction has at most one signature request. Its NDA content is copied in
at creation and never re-read, and no operation moves a request or signer
backwards.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from .auth import require_party, require_provider
from .backends import SignatureBackend
from .directory import Transaction, TransactionDirectory
from .errors import AuthorizationDenied, Conflict, NotFound, ValidationFailed
from .models import SignatureRequest, Signer
from .registry import DocumentRegistry
from .repository import SignatureRepository
from .storage import signed_nda_url
from .sync import MetadataSynchronizer
from .utils import isoformat, new_id, utcnow

logger = logging.getLogger(__name__)

FULLY_SIGNED_MESSAGE = "NDA fully signed by all parties!"
WAITING_MESSAGE = "Your signature has been recorded. Waiting for other party to sign."


def default_nda_text(project_title: Optional[str]) -> str:
    return f"""NON-DISCLOSURE AGREEMENT

This Non-Disclosure Agreement ("Agreement") is entered into as of the date of the last signature below.

PROJECT: {project_title or 'Street2Ivy Project'}

1. CONFIDENTIAL INFORMATION
The parties agree that all information shared in connection with this project, including but not limited to business plans, technical data, trade secrets, customer information, and any other proprietary information, shall be considered confidential.

2. OBLIGATIONS
The receiving party agrees to:
- Keep all confidential information strictly confidential
- Not disclose confidential information to any third party without prior written consent
- Use confidential information only for the purposes of this project
- Take reasonable measures to protect confidential information

3. TERM
This Agreement shall remain in effect for a period of two (2) years from the date of execution.

4. RETURN OF MATERIALS
Upon completion of the project or termination of this Agreement, all confidential materials shall be returned or destroyed.

5. ACKNOWLEDGMENT
By signing below, both parties acknowledge they have read, understand, and agree to be bound by the terms of this Agreement.

This document is legally binding once signed by all parties."""


@dataclass
class SignResult:
    request: SignatureRequest
    signers: List[Signer]
    all_signed: bool
    metadata_synced: bool

    @property
    def message(self) -> str:
        return FULLY_SIGNED_MESSAGE if self.all_signed else WAITING_MESSAGE


def _enqueue_seal(request_id: str):
    from .tasks import seal_signed_nda
    seal_signed_nda.delay(request_id)


def _enqueue_notice(request_id: str):
    from .tasks import send_completion_notice
    send_completion_notice.delay(request_id)


class NdaWorkflow:
    def __init__(self, repository: SignatureRepository, registry: DocumentRegistry,
                 backend: SignatureBackend, directory: TransactionDirectory,
                 synchronizer: MetadataSynchronizer, enqueue_seal=_enqueue_seal,
                 enqueue_notice=_enqueue_notice):
        self.repository = repository
        self.registry = registry
        self.backend = backend
        self.directory = directory
        self.synchronizer = synchronizer
        self.enqueue_seal = enqueue_seal
        self.enqueue_notice = enqueue_notice

    # ---------- creation ----------

    def _create(self, tx: Transaction, document_url: Optional[str], nda_text: Optional[str]):
        # at most one vendor request per transaction
        existing = self.repository.get_by_transaction(tx.id)
        if existing:
            return existing, False
        request_id = new_id("sig")
        request = SignatureRequest(
            id=request_id,
            transaction_id=tx.id,
            listing_id=tx.listing_id,
            title=f"NDA for {tx.listing_title or 'Street2Ivy Project'}",
            status="pending",
            created_at=utcnow(),
            document_url=document_url,
            nda_text=nda_text,
        )
        signers = [
            Signer(id=f"signer_{role}_{request_id}", request_id=request_id, user_id=party.id,
                   email=party.email, name=party.name, role=role, routing_order=order)
            for order, (role, party) in enumerate((("provider", tx.provider), ("customer", tx.customer)))
        ]
        embedded = self.backend.create_embedded(request, signers)
        if embedded:
            request.external_request_id = embedded.external_request_id
            for signer in signers:
                slot = embedded.signers.get(signer.user_id)
                if slot:
                    signer.external_signature_id = slot.signature_id
                    signer.sign_url = slot.sign_url
        request, created = self.repository.add(request, signers)
        if created:
            logger.info("signature request %s created for transaction %s (%s backend)",
                        request.id, tx.id, self.backend.name)
        elif embedded:
            # TODO: cancel the vendor request via /signature_request/cancel once the backend exposes it
            logger.warning("vendor request %s for transaction %s lost a creation race and is orphaned",
                           embedded.external_request_id, tx.id)
        return request, created

    def create_request(self, transaction_id: str, requester_id: str):
        """Provider-initiated request; returns (request, created)."""
        tx = self.directory.get_transaction(transaction_id)
        require_provider(tx, requester_id)
        doc = self.registry.get(tx.listing_id) if tx.listing_id else None
        if doc is None or not (doc.document_url or doc.nda_text):
            raise ValidationFailed("No NDA document found for this project. Please upload an NDA first.")
        request, created = self._create(tx, doc.document_url, doc.nda_text)
        if created:
            self.synchronizer.sync(transaction_id, {
                "ndaSignatureRequestId": request.id,
                "ndaSignatureStatus": "pending",
                "ndaSignatureRequestedAt": isoformat(request.created_at),
            })
        return request, created

    def _lazy_create(self, transaction_id: str, caller_id: str) -> SignatureRequest:
        tx = self.directory.get_transaction(transaction_id)
        if caller_id not in (tx.provider.id, tx.customer.id):
            raise AuthorizationDenied("You are not authorized to sign this NDA.")
        doc = self.registry.get(tx.listing_id) if tx.listing_id else None
        document_url = doc.document_url if doc else None
        nda_text = (doc.nda_text if doc else None) or default_nda_text(tx.listing_title)
        request, _ = self._create(tx, document_url, nda_text)
        return request

    # ---------- signing ----------

    def sign(self, transaction_id: str, signer_id: str, signature_data: Optional[str] = None,
             agreed_to_terms: bool = False, ip: Optional[str] = None, user_agent: Optional[str] = None) -> SignResult:
        if not agreed_to_terms:
            raise ValidationFailed("You must agree to the terms.")
        request = self.repository.get_by_transaction(transaction_id)
        if request is None:
            request = self._lazy_create(transaction_id, signer_id)
        signer = require_party(self.repository.signers(request.id), signer_id,
                               "You are not authorized to sign this NDA.")
        if signer.status == "signed":
            raise Conflict("You have already signed this NDA.", signedAt=isoformat(signer.signed_at))

        signed_at = utcnow()
        data = signature_data or f"Signed by {signer.name}"
        if not self.repository.mark_signed(signer, signed_at, data, ip=ip, ua=user_agent):
            # a concurrent call for the same signer got there first
            raise Conflict("You have already signed this NDA.", signedAt=isoformat(signer.signed_at))
        logger.info("%s signed NDA request %s as %s", signer_id, request.id, signer.role)

        completed = self._try_complete(request)
        synced = self._sync_signed(request, [signer])
        if completed:
            self._after_completion(request)
        return SignResult(
            request=request,
            signers=self.repository.signers(request.id),
            all_signed=request.status == "completed",
            metadata_synced=synced,
        )

    def record_vendor_signatures(self, request: SignatureRequest, signed: List[tuple], complete: bool = False) -> int:
        """Apply vendor-reported signatures ``[(signer, signed_at), ...]``; already-signed slots are skipped."""
        applied = []
        for signer, signed_at in signed:
            if signer.status == "signed":
                continue
            if self.repository.mark_signed(signer, signed_at or utcnow(), "Signed via Dropbox Sign"):
                applied.append(signer)
        completed = False
        if complete or applied:
            completed = self._try_complete(request)
        if applied or completed:
            self._sync_signed(request, applied)
        if completed:
            self._after_completion(request)
        return len(applied)

    def _try_complete(self, request: SignatureRequest) -> bool:
        if not self.repository.complete(request, utcnow(), signed_nda_url(request.id)):
            return False
        logger.info("NDA request %s fully signed", request.id)
        return True

    def _after_completion(self, request: SignatureRequest):
        # runs after the completion patch is delivered or queued; failures here never reach the caller
        for label, enqueue in (("sealing", self.enqueue_seal), ("completion notice", self.enqueue_notice)):
            try:
                enqueue(request.id)
            except Exception:
                logger.exception("could not enqueue %s for %s", label, request.id)

    def _sync_signed(self, request: SignatureRequest, signers: List[Signer]) -> bool:
        patch = {
            "ndaSignatureRequestId": request.id,
            "ndaSignatureStatus": request.status,
        }
        for signer in signers:
            patch[f"nda{signer.role.capitalize()}SignedAt"] = isoformat(signer.signed_at)
        if request.status == "completed":
            patch["ndaFullySigned"] = True
            patch["ndaCompletedAt"] = isoformat(request.completed_at)
            patch["signedNdaUrl"] = request.signed_document_url
        return self.synchronizer.sync(request.transaction_id, patch)

    # ---------- queries ----------

    def _parties_only(self, transaction_id: str, caller_id: str, message: str) -> Transaction:
        tx = self.directory.get_transaction(transaction_id)
        if caller_id not in (tx.provider.id, tx.customer.id):
            raise AuthorizationDenied(message)
        return tx

    def get_status(self, transaction_id: str, caller_id: str) -> dict:
        request = self.repository.get_by_transaction(transaction_id)
        if request is None:
            tx = self._parties_only(transaction_id, caller_id, "You are not a party to this NDA.")
            return {
                "hasSignatureRequest": False,
                "ndaSignatureStatus": tx.metadata.get("ndaSignatureStatus"),
                "ndaFullySigned": tx.metadata.get("ndaFullySigned", False),
            }
        signers = self.repository.signers(request.id)
        me = require_party(signers, caller_id)
        view = request_view(request, signers, viewer_id=caller_id)
        view.update({
            "createdAt": isoformat(request.created_at),
            "ndaText": request.nda_text,
            "documentUrl": request.document_url,
        })
        return {
            "hasSignatureRequest": True,
            "signatureRequest": view,
            "currentUserSigner": {"id": me.id, "status": me.status, "signedAt": isoformat(me.signed_at)},
        }

    def download(self, transaction_id: str, caller_id: str) -> dict:
        denied = "You are not authorized to download this document."
        request = self.repository.get_by_transaction(transaction_id)
        if request is None:
            self._parties_only(transaction_id, caller_id, denied)
            raise NotFound("No signature request found.")
        signers = self.repository.signers(request.id)
        require_party(signers, caller_id, denied)
        if request.status != "completed":
            raise Conflict("NDA has not been fully signed yet.", status=request.status)
        return {
            "url": request.signed_document_url,
            "title": request.title,
            "completedAt": isoformat(request.completed_at),
            "signers": [
                {"name": s.name, "role": s.role, "signedAt": isoformat(s.signed_at)}
                for s in signers
            ],
        }


def signer_summary(signer: Signer) -> dict:
    return {
        "name": signer.name,
        "role": signer.role,
        "status": signer.status,
        "signedAt": isoformat(signer.signed_at),
    }


def request_view(request: SignatureRequest, signers: List[Signer], viewer_id: Optional[str] = None) -> dict:
    """Public view; signature data, IP and user agent never leave the service."""
    view = {
        "id": request.id,
        "transactionId": request.transaction_id,
        "title": request.title,
        "status": request.status,
        "completedAt": isoformat(request.completed_at),
        "signers": [signer_summary(s) for s in signers],
        "signedDocumentUrl": request.signed_document_url,
    }
    mine = next((s for s in signers if s.user_id == viewer_id), None)
    if mine and mine.sign_url:
        view["signUrl"] = mine.sign_url
    return view
