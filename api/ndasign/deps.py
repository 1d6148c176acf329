from fastapi import Depends, Request
from sqlmodel import Session

from .backends import SignatureBackend
from .db import get_session
from .directory import TransactionDirectory
from .registry import DocumentRegistry
from .repository import SignatureRepository
from .sync import MetadataSynchronizer
from .workflow import NdaWorkflow


def get_directory(request: Request) -> TransactionDirectory:
    return request.app.state.directory

def get_backend(request: Request) -> SignatureBackend:
    return request.app.state.signature_backend

def get_registry(
    session: Session = Depends(get_session),
    directory: TransactionDirectory = Depends(get_directory),
) -> DocumentRegistry:
    return DocumentRegistry(session, directory)

def get_workflow(
    session: Session = Depends(get_session),
    directory: TransactionDirectory = Depends(get_directory),
    backend: SignatureBackend = Depends(get_backend),
) -> NdaWorkflow:
    return NdaWorkflow(
        SignatureRepository(session),
        DocumentRegistry(session, directory),
        backend,
        directory,
        MetadataSynchronizer(session, directory),
    )
