from pydantic import BaseModel
from typing import Optional

class NdaUpload(BaseModel):
    listingId: str
    documentUrl: Optional[str] = None
    documentName: Optional[str] = None
    ndaText: Optional[str] = None

class SignNda(BaseModel):
    signatureData: Optional[str] = None
    agreedToTerms: bool = False

class Caller(BaseModel):
    user_id: str
    role: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
