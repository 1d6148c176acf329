import logging
from celery import Celery
from sqlmodel import Session

from . import db, email
from .config import REDIS_URL, WORKER_QUEUE, CELERY_TASK_ALWAYS_EAGER
from .directory import TransactionDirectory
from .models import SignatureRequest
from .repository import SignatureRepository
from .sealing import seal_signed_nda as render_signed_nda
from .storage import put_bytes, signed_nda_key
from .sync import MetadataSynchronizer

logger = logging.getLogger(__name__)

cel = Celery("ndasign", broker=REDIS_URL, backend=REDIS_URL)
cel.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_always_eager=CELERY_TASK_ALWAYS_EAGER,
    beat_schedule={
        "sweep-metadata-outbox": {"task": "flush_metadata_outbox", "schedule": 60.0},
    },
)

directory = TransactionDirectory()

@cel.task(name="seal_signed_nda", queue=WORKER_QUEUE)
def seal_signed_nda(request_id: str):
    with Session(db.engine) as session:
        request = session.get(SignatureRequest, request_id)
        if not request or request.status != "completed":
            logger.warning("seal requested for %s which is not completed", request_id)
            return None
        repo = SignatureRepository(session)
        final_pdf, sha_final = render_signed_nda(request, repo.signers(request_id))
        key = signed_nda_key(request_id)
        put_bytes(key, final_pdf, content_type="application/pdf")
        repo.append_event(request_id, "system", "sealed", {"key": key, "sha256_final": sha_final})
        session.commit()
    return {"pdf": key, "sha256_final": sha_final}

@cel.task(name="send_completion_notice", queue=WORKER_QUEUE)
def send_completion_notice(request_id: str):
    with Session(db.engine) as session:
        request = session.get(SignatureRequest, request_id)
        if not request or request.status != "completed":
            logger.warning("completion notice requested for %s which is not completed", request_id)
            return None
        signers = SignatureRepository(session).signers(request_id)
        email.notify_nda_completed(request, signers)
    return {"notified": [s.email for s in signers if s.email]}

# no transaction_id means sweep every pending patch
@cel.task(name="flush_metadata_outbox", queue=WORKER_QUEUE)
def flush_metadata_outbox(transaction_id: str = None):
    with Session(db.engine) as session:
        synchronizer = MetadataSynchronizer(session, directory, enqueue=lambda tx: None)
        delivered = synchronizer.flush(transaction_id)
        remaining = synchronizer.pending_count(transaction_id)
    return {"delivered": delivered, "remaining": remaining}
