from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field as ORMField

class NdaDocument(SQLModel, table=True):
    __tablename__ = "nda_documents"
    id: str = ORMField(primary_key=True)
    listing_id: str = ORMField(index=True)
    uploaded_by: str
    uploaded_at: datetime = ORMField(default_factory=datetime.utcnow)
    document_url: Optional[str] = None
    document_name: str = "NDA Agreement"
    nda_text: Optional[str] = None
    status: str = "active"  # active|superseded

class SignatureRequest(SQLModel, table=True):
    __tablename__ = "signature_requests"
    id: str = ORMField(primary_key=True)
    transaction_id: str = ORMField(index=True, unique=True)
    listing_id: Optional[str] = None
    title: str
    status: str = "pending"  # pending|completed
    created_at: datetime = ORMField(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    document_url: Optional[str] = None
    nda_text: Optional[str] = None
    signed_document_url: Optional[str] = None
    external_request_id: Optional[str] = ORMField(default=None, index=True)
    version: int = 1

class Signer(SQLModel, table=True):
    __tablename__ = "signers"
    id: str = ORMField(primary_key=True)
    request_id: str = ORMField(index=True)
    user_id: str
    role: str  # provider|customer
    email: Optional[str] = None
    name: Optional[str] = None
    routing_order: int = 0
    status: str = "pending"  # pending|signed
    signed_at: Optional[datetime] = None
    signature_data: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    sign_url: Optional[str] = None
    external_signature_id: Optional[str] = None

class SignatureEvent(SQLModel, table=True):
    __tablename__ = "signature_events"
    id: Optional[int] = ORMField(default=None, primary_key=True)
    request_id: str = ORMField(index=True)
    actor: str  # system|vendor|user:<id>
    type: str   # created|signed|completed|sealed|webhook
    meta_json: str = "{}"
    ip: Optional[str] = None
    ua: Optional[str] = None
    at: datetime = ORMField(default_factory=datetime.utcnow)
    prev_hash: Optional[str] = None
    hash: Optional[str] = None

class MetadataOutbox(SQLModel, table=True):
    __tablename__ = "metadata_outbox"
    id: Optional[int] = ORMField(default=None, primary_key=True)
    transaction_id: str = ORMField(index=True)
    patch_json: str = "{}"
    status: str = "pending"  # pending|delivered|dead
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)
    delivered_at: Optional[datetime] = None
