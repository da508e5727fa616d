"""
Reconciliation sweep for references left pointing at pending paths.

Object store actions and document updates are not transactional. If an
invocation dies after promoting or deleting an object but before syncing the
owning document, the document keeps referencing a pending path that no longer
exists. This sweep walks every such reference and settles it from the
object store's current state.
"""

from typing import Iterator, Optional, Tuple

from sqlalchemy.orm import Session

from moderation_worker.core.config import settings
from moderation_worker.core.exceptions import (
    ConfigurationException,
    ObjectNotFoundException,
    StoreOperationException
)
from moderation_worker.core.logger import logger
from moderation_worker.models.profile import Profile
from moderation_worker.models.sale import Item, Sale
from moderation_worker.schemas.events import ContentKind, PendingObject
from moderation_worker.schemas.outcomes import ModerationOutcome, ReconciliationReport
from moderation_worker.services.reference_repository import ReferenceRepository
from moderation_worker.services.strike_ledger import StrikeLedger
from moderation_worker.services.transition_engine import TransitionEngine

# (model, reference field, content kind) for every moderated reference
REFERENCE_FIELDS = (
    (Sale, "sale_cover_photo", ContentKind.sale_cover),
    (Item, "image_url", ContentKind.sale_item),
    (Profile, "photo_url", ContentKind.profile_photo),
)


class ReconciliationService:
    def __init__(self, store, db: Session, pending_prefix: Optional[str] = None):
        self.store = store
        self.db = db
        self.pending_prefix = pending_prefix or settings.pending_prefix
        self.engine = TransitionEngine(
            store,
            ReferenceRepository(db),
            StrikeLedger(db),
            pending_prefix=self.pending_prefix
        )

    def pending_references(self) -> Iterator[Tuple[str, ContentKind]]:
        for model, field, kind in REFERENCE_FIELDS:
            column = getattr(model, field)
            rows = (
                self.db.query(column)
                .filter(column.startswith(self.pending_prefix, autoescape=True))
                .distinct()
                .all()
            )
            for (path,) in rows:
                yield path, kind

    def reconcile(self, bucket: Optional[str] = None) -> ReconciliationReport:
        """
        Settle every reference that still points at a pending path.

        Args:
            bucket: Storage bucket holding the referenced objects

        Returns:
            ReconciliationReport with per-state counts

        Raises:
            ConfigurationException: If no bucket is given or configured
        """
        bucket = bucket or settings.storage_bucket
        if not bucket:
            raise ConfigurationException("STORAGE_BUCKET is not set", setting="storage_bucket")

        report = ReconciliationReport()
        for path, kind in list(self.pending_references()):
            report.scanned += 1
            pending = PendingObject(bucket=bucket, key=path, content_kind=kind)
            try:
                if self._exists(pending):
                    report.in_flight += 1
                    continue
                outcome = self.engine.resolve_absent(pending)
            except StoreOperationException as e:
                report.errors += 1
                logger.error(f"Reconciliation failed: {e.message}", extra=pending.log_context())
                continue

            if outcome.outcome == ModerationOutcome.approved:
                report.promoted += 1
            else:
                report.cleared += 1

        logger.info(f"Reconciliation finished: {report.model_dump()}", extra={"bucket": bucket})
        return report

    def _exists(self, pending: PendingObject) -> bool:
        try:
            self.store.get_metadata(pending.bucket, pending.key)
        except ObjectNotFoundException:
            return False
        return True


if __name__ == "__main__":
    from moderation_worker.clients.google_auth import build_google_session
    from moderation_worker.clients.storage_client import StorageClient
    from moderation_worker.db.session import build_session_factory

    google_session = build_google_session(settings.google_access_token)
    db = build_session_factory()()
    try:
        ReconciliationService(StorageClient(google_session, settings.http_timeout_seconds), db).reconcile()
    finally:
        db.close()
        google_session.close()
