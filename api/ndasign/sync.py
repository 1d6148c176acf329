"""Pushes signing status into the Transaction Directory's metadata bag.

Writes are read-merge-write with the directory's metadata version as an
If-Match precondition. Patches that cannot be delivered after the local commit
go to ``metadata_outbox`` and are replayed in order by the worker.
"""
import json
import logging
from typing import Optional
from sqlmodel import Session, select

from .config import METADATA_CONFLICT_RETRIES
from .directory import TransactionDirectory
from .errors import ExternalProviderError, NotFound, SyncFailure, VersionConflict
from .models import MetadataOutbox
from .utils import canonical_json, utcnow

logger = logging.getLogger(__name__)


def _enqueue_flush(transaction_id: str):
    from .tasks import flush_metadata_outbox
    flush_metadata_outbox.delay(transaction_id)


class MetadataSynchronizer:
    def __init__(self, session: Session, directory: TransactionDirectory, enqueue=_enqueue_flush):
        self.session = session
        self.directory = directory
        self.enqueue = enqueue

    def sync(self, transaction_id: str, patch: dict) -> bool:
        """Apply ``patch``; True when delivered now, False when queued for retry."""
        if self.pending_count(transaction_id):
            self._queue(transaction_id, patch, "queued behind earlier undelivered patches")
            return False
        try:
            self._apply(transaction_id, patch)
        except (ExternalProviderError, SyncFailure, NotFound) as exc:
            logger.warning("metadata sync for %s failed, queueing: %s", transaction_id, exc)
            self._queue(transaction_id, patch, str(exc))
            return False
        return True

    def _apply(self, transaction_id: str, patch: dict):
        for attempt in range(METADATA_CONFLICT_RETRIES + 1):
            metadata, version = self.directory.read_metadata(transaction_id)
            merged = {**metadata, **patch}
            try:
                self.directory.write_metadata(transaction_id, merged, version)
                return
            except VersionConflict:
                logger.info("metadata for %s changed underneath us (attempt %s)", transaction_id, attempt + 1)
        raise SyncFailure(f"Metadata for transaction {transaction_id} kept changing.")

    def _queue(self, transaction_id: str, patch: dict, reason: str):
        entry = MetadataOutbox(transaction_id=transaction_id, patch_json=canonical_json(patch), last_error=reason)
        self.session.add(entry)
        self.session.commit()
        try:
            self.enqueue(transaction_id)
        except Exception:
            # the row is durable; the periodic sweep picks it up
            logger.exception("could not enqueue metadata flush for %s", transaction_id)

    def pending_count(self, transaction_id: Optional[str] = None) -> int:
        stmt = select(MetadataOutbox).where(MetadataOutbox.status == "pending")
        if transaction_id:
            stmt = stmt.where(MetadataOutbox.transaction_id == transaction_id)
        return len(self.session.exec(stmt).all())

    def flush(self, transaction_id: Optional[str] = None) -> int:
        """Deliver pending patches oldest first; a failure blocks later patches of that transaction."""
        stmt = select(MetadataOutbox).where(MetadataOutbox.status == "pending").order_by(MetadataOutbox.id)
        if transaction_id:
            stmt = stmt.where(MetadataOutbox.transaction_id == transaction_id)
        delivered = 0
        blocked = set()
        for entry in self.session.exec(stmt).all():
            if entry.transaction_id in blocked:
                continue
            entry.attempts += 1
            try:
                self._apply(entry.transaction_id, json.loads(entry.patch_json))
            except NotFound as exc:
                entry.status = "dead"
                entry.last_error = exc.message
                logger.error("dropping metadata patch %s: %s", entry.id, exc.message)
            except (ExternalProviderError, SyncFailure) as exc:
                entry.last_error = str(exc)
                blocked.add(entry.transaction_id)
            else:
                entry.status = "delivered"
                entry.delivered_at = utcnow()
                entry.last_error = None
                delivered += 1
            self.session.add(entry)
            self.session.commit()
        if delivered:
            logger.info("delivered %s queued metadata patch(es)", delivered)
        return delivered
