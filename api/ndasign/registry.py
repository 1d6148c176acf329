import logging
from typing import Optional
from sqlmodel import Session, select

from .auth import require_listing_owner
from .directory import TransactionDirectory
from .errors import NotFound, ValidationFailed
from .models import NdaDocument
from .schemas import Caller
from .utils import sanitize_text, new_id, utcnow, isoformat

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_NAME = "NDA Agreement"
MAX_NAME_LENGTH = 200


class DocumentRegistry:
    """Current NDA document per listing, mirrored into the listing record."""

    def __init__(self, session: Session, directory: TransactionDirectory):
        self.session = session
        self.directory = directory

    def _active(self, listing_id: str) -> Optional[NdaDocument]:
        return self.session.exec(
            select(NdaDocument).where(NdaDocument.listing_id == listing_id, NdaDocument.status == "active")
        ).first()

    def upload(self, listing_id: str, caller: Caller, document_url: Optional[str] = None,
               document_name: Optional[str] = None, nda_text: Optional[str] = None) -> NdaDocument:
        if not listing_id:
            raise ValidationFailed("Listing ID is required.")
        if not document_url and not nda_text:
            raise ValidationFailed("Either document URL or NDA text is required.")
        listing = self.directory.get_listing(listing_id)
        require_listing_owner(caller, listing)

        doc = NdaDocument(
            id=new_id("nda"),
            listing_id=listing_id,
            uploaded_by=caller.user_id,
            uploaded_at=utcnow(),
            document_url=document_url or None,
            document_name=sanitize_text(document_name, MAX_NAME_LENGTH) if document_name else DEFAULT_DOCUMENT_NAME,
            nda_text=sanitize_text(nda_text) if nda_text else None,
            status="active",
        )
        # the listing mirror must land before the local row is committed
        self.directory.update_listing(
            listing_id,
            private_data={
                "ndaDocumentId": doc.id,
                "ndaDocumentUrl": doc.document_url,
                "ndaText": doc.nda_text,
            },
            public_data={"ndaRequired": True},
        )
        previous = self._active(listing_id)
        if previous:
            previous.status = "superseded"
            self.session.add(previous)
        self.session.add(doc)
        self.session.commit()
        self.session.refresh(doc)
        logger.info("NDA document %s uploaded for listing %s by %s", doc.id, listing_id, caller.user_id)
        return doc

    def get(self, listing_id: str) -> Optional[NdaDocument]:
        doc = self._active(listing_id)
        if doc:
            return doc
        try:
            listing = self.directory.get_listing(listing_id)
        except NotFound:
            return None
        private = listing.private_data
        text = private.get("ndaText") or listing.public_data.get("ndaText")
        if not (private.get("ndaDocumentId") or private.get("ndaDocumentUrl") or text):
            return None
        # transient view of the mirrored reference, never persisted
        return NdaDocument(
            id=private.get("ndaDocumentId"),
            listing_id=listing_id,
            uploaded_by=listing.author_id,
            document_url=private.get("ndaDocumentUrl"),
            nda_text=text,
        )


def document_view(doc: NdaDocument) -> dict:
    return {
        "id": doc.id,
        "listingId": doc.listing_id,
        "documentUrl": doc.document_url,
        "documentName": doc.document_name,
        "ndaText": doc.nda_text,
        "uploadedBy": doc.uploaded_by,
        "uploadedAt": isoformat(doc.uploaded_at),
        "status": doc.status,
    }
