import logging
from typing import List, Optional
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .models import SignatureRequest, Signer, SignatureEvent
from .utils import canonical_json, sha256_bytes

logger = logging.getLogger(__name__)


class SignatureRepository:
    """Signature requests and their signers.

    State transitions are conditional UPDATEs: a signer moves pending -> signed
    and a request moves pending -> completed only when the row still holds the
    expected state, so concurrent callers cannot both win.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_by_transaction(self, transaction_id: str) -> Optional[SignatureRequest]:
        return self.session.exec(
            select(SignatureRequest).where(SignatureRequest.transaction_id == transaction_id)
        ).first()

    def get_by_external_id(self, external_request_id: str) -> Optional[SignatureRequest]:
        return self.session.exec(
            select(SignatureRequest).where(SignatureRequest.external_request_id == external_request_id)
        ).first()

    def signers(self, request_id: str) -> List[Signer]:
        return self.session.exec(
            select(Signer).where(Signer.request_id == request_id).order_by(Signer.routing_order)
        ).all()

    def add(self, request: SignatureRequest, signers: List[Signer]):
        """Persist a new request; returns (request, created).

        A concurrent insert for the same transaction loses on the unique
        constraint and gets the stored request back instead.
        """
        self.session.add(request)
        for signer in signers:
            self.session.add(signer)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            existing = self.get_by_transaction(request.transaction_id)
            if existing is None:
                raise
            logger.info("signature request for %s already created concurrently", request.transaction_id)
            return existing, False
        self.append_event(request.id, "system", "created", {"transaction_id": request.transaction_id})
        self.session.commit()
        self.session.refresh(request)
        return request, True

    def mark_signed(self, signer: Signer, signed_at, signature_data, ip=None, ua=None) -> bool:
        result = self.session.exec(
            update(Signer)
            .where(Signer.id == signer.id, Signer.status == "pending")
            .values(status="signed", signed_at=signed_at, signature_data=signature_data,
                    ip_address=ip, user_agent=ua)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if won:
            self.append_event(signer.request_id, f"user:{signer.user_id}", "signed",
                              {"signer_id": signer.id, "role": signer.role}, ip=ip, ua=ua)
        self.session.commit()
        self.session.refresh(signer)
        return won

    def complete(self, request: SignatureRequest, completed_at, signed_document_url) -> bool:
        """Move pending -> completed once every signer is signed; True for the single winner."""
        pending = self.session.exec(
            select(Signer).where(Signer.request_id == request.id, Signer.status != "signed")
        ).first()
        if pending is not None:
            return False
        result = self.session.exec(
            update(SignatureRequest)
            .where(
                SignatureRequest.id == request.id,
                SignatureRequest.status == "pending",
                SignatureRequest.version == request.version,
            )
            .values(status="completed", completed_at=completed_at,
                    signed_document_url=signed_document_url, version=request.version + 1)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if won:
            self.append_event(request.id, "system", "completed", {"signed_document_url": signed_document_url})
        self.session.commit()
        self.session.refresh(request)
        return won

    def append_event(self, request_id: str, actor: str, type_: str, meta: dict, ip=None, ua=None):
        last = self.session.exec(
            select(SignatureEvent).where(SignatureEvent.request_id == request_id).order_by(SignatureEvent.id.desc())
        ).first()
        prev_hash = last.hash if last else "0" * 64
        payload = {"actor": actor, "type": type_, "meta": meta}
        event = SignatureEvent(
            request_id=request_id, actor=actor, type=type_,
            meta_json=canonical_json(payload), prev_hash=prev_hash,
            ip=ip, ua=ua,
        )
        event.hash = sha256_bytes((prev_hash + event.meta_json).encode())
        self.session.add(event)
        return event

    def events(self, request_id: str) -> List[SignatureEvent]:
        return self.session.exec(
            select(SignatureEvent).where(SignatureEvent.request_id == request_id).order_by(SignatureEvent.id)
        ).all()
