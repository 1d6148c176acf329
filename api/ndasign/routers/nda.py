from fastapi import APIRouter, Depends, Request

from ..auth import resolve_caller
from ..deps import get_registry, get_workflow
from ..registry import DocumentRegistry, document_view
from ..schemas import Caller, NdaUpload, SignNda
from ..workflow import NdaWorkflow, request_view

router = APIRouter()

@router.post("/upload")
def upload_document(
    payload: NdaUpload,
    caller: Caller = Depends(resolve_caller),
    registry: DocumentRegistry = Depends(get_registry),
):
    doc = registry.upload(
        payload.listingId,
        caller,
        document_url=payload.documentUrl,
        document_name=payload.documentName,
        nda_text=payload.ndaText,
    )
    return {"success": True, "ndaDocument": document_view(doc)}

@router.post("/request-signature/{transaction_id}")
def request_signature(
    transaction_id: str,
    caller: Caller = Depends(resolve_caller),
    workflow: NdaWorkflow = Depends(get_workflow),
):
    request, created = workflow.create_request(transaction_id, caller.user_id)
    signers = workflow.repository.signers(request.id)
    body = {"success": True, "signatureRequest": request_view(request, signers, viewer_id=caller.user_id)}
    if not created:
        body["message"] = "Signature request already exists."
    return body

@router.get("/signature-status/{transaction_id}")
def signature_status(
    transaction_id: str,
    caller: Caller = Depends(resolve_caller),
    workflow: NdaWorkflow = Depends(get_workflow),
):
    return workflow.get_status(transaction_id, caller.user_id)

@router.post("/sign/{transaction_id}")
def sign_nda(
    transaction_id: str,
    payload: SignNda,
    request: Request,
    caller: Caller = Depends(resolve_caller),
    workflow: NdaWorkflow = Depends(get_workflow),
):
    result = workflow.sign(
        transaction_id,
        caller.user_id,
        signature_data=payload.signatureData,
        agreed_to_terms=payload.agreedToTerms,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return {
        "success": True,
        "message": result.message,
        "signatureRequest": request_view(result.request, result.signers, viewer_id=caller.user_id),
        "allSigned": result.all_signed,
        "metadataSynced": result.metadata_synced,
    }

@router.get("/download/{transaction_id}")
def download_signed_nda(
    transaction_id: str,
    caller: Caller = Depends(resolve_caller),
    workflow: NdaWorkflow = Depends(get_workflow),
):
    return {"success": True, "document": workflow.download(transaction_id, caller.user_id)}

@router.get("/{listing_id}")
def get_document(
    listing_id: str,
    caller: Caller = Depends(resolve_caller),
    registry: DocumentRegistry = Depends(get_registry),
):
    doc = registry.get(listing_id)
    if doc is None:
        return {"hasNda": False, "ndaDocument": None}
    return {"hasNda": True, "ndaDocument": document_view(doc)}
