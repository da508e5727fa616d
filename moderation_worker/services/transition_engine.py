"""
Moderation state transitions for pending uploads.

A pending object ends in exactly one terminal state. Rejected objects are
deleted; approved objects are copied to their public key and only then
removed from the pending key. The object store is the source of truth, so
document updates and strikes run after the store action and their failures
are logged rather than propagated.
"""

import uuid
from typing import Callable, Dict, Optional
from urllib.parse import quote

from moderation_worker.core.exceptions import (
    DatabaseException,
    ObjectNotFoundException,
    PreconditionFailedException,
    StoreOperationException
)
from moderation_worker.core.logger import logger
from moderation_worker.schemas.events import ContentKind, PendingObject
from moderation_worker.schemas.outcomes import HandlerOutcome, ModerationOutcome
from moderation_worker.services.reference_repository import ReferenceRepository
from moderation_worker.services.strike_ledger import StrikeLedger

MODERATION_METADATA_KEY = "moderation"
APPROVED_MARKER = "approved"
DOWNLOAD_TOKEN_METADATA_KEY = "firebaseStorageDownloadTokens"
DOWNLOAD_URL_TEMPLATE = "https://firebasestorage.googleapis.com/v0/b/{bucket}/o/{key}?alt=media&token={token}"
MAX_PUBLISH_ATTEMPTS = 3


def final_key_for(pending_key: str, pending_prefix: str = "pending/") -> str:
    if pending_key.startswith(pending_prefix):
        return pending_key[len(pending_prefix):]
    return pending_key


def public_download_url(bucket: str, key: str, token: str) -> str:
    return DOWNLOAD_URL_TEMPLATE.format(
        bucket=bucket,
        key=quote(key, safe=""),
        token=quote(token, safe="")
    )


def approved_token(metadata: Optional[Dict[str, str]]) -> Optional[str]:
    """Download token of an approved object, or None if it is not approved."""
    if not metadata or metadata.get(MODERATION_METADATA_KEY) != APPROVED_MARKER:
        return None
    tokens = [t.strip() for t in metadata.get(DOWNLOAD_TOKEN_METADATA_KEY, "").split(",") if t.strip()]
    return tokens[0] if tokens else None


def new_download_token() -> str:
    return str(uuid.uuid4())


class TransitionEngine:
    """Drives a pending object to Rejected or Approved."""

    def __init__(
        self,
        store,
        references: ReferenceRepository,
        strikes: StrikeLedger,
        pending_prefix: str = "pending/",
        token_factory: Callable[[], str] = new_download_token
    ):
        self.store = store
        self.strikes = strikes
        self.pending_prefix = pending_prefix
        self.token_factory = token_factory

        # Unknown kinds have no owning document
        self._reject_ops = {
            ContentKind.sale_cover: references.reject_sale_cover,
            ContentKind.sale_item: references.reject_item_image,
            ContentKind.profile_photo: references.reject_profile_photo,
            ContentKind.unknown: None,
        }
        self._approve_ops = {
            ContentKind.sale_cover: references.approve_sale_cover,
            ContentKind.sale_item: references.approve_item_image,
            ContentKind.profile_photo: references.approve_profile_photo,
            ContentKind.unknown: None,
        }

    def reject(self, pending: PendingObject) -> HandlerOutcome:
        """
        Delete an unsafe object, then clear its reference and record a strike.

        Raises:
            StoreOperationException: If the delete fails for any reason other
                than the object already being gone
        """
        context = pending.log_context()
        logger.info("Image unsafe, deleting object", extra=context)

        try:
            self.store.delete(pending.bucket, pending.key)
        except ObjectNotFoundException:
            logger.info("Object already deleted, skipping strike", extra=context)
            self._sync_rejection(pending)
            return HandlerOutcome.acknowledge(
                "already rejected",
                outcome=ModerationOutcome.rejected,
                object_key=pending.key
            )

        logger.info("Deleted unsafe object", extra={**context, "outcome": "rejected"})
        self._sync_rejection(pending)
        self._record_strike(pending)

        return HandlerOutcome.acknowledge(
            "rejected",
            outcome=ModerationOutcome.rejected,
            object_key=pending.key
        )

    def approve(self, pending: PendingObject) -> HandlerOutcome:
        """
        Promote a safe object to its public key and point its document at it.

        The copy and its metadata are confirmed before the pending object is
        deleted, so an interrupted promotion leaves the pending copy in place.
        The final object is written once: a concurrent delivery that loses
        the copy joins the existing promotion, and the URL is always built
        from the token that ends up on the object.

        Raises:
            StoreOperationException: If the copy, metadata update or delete fails
        """
        context = pending.log_context()
        final_key = final_key_for(pending.key, self.pending_prefix)

        logger.info(f"Image safe, promoting to {final_key}", extra=context)

        try:
            created = self.store.copy(
                pending.bucket, pending.key, pending.bucket, final_key, if_generation_match=0
            )
            metageneration = (created or {}).get("metageneration")
        except ObjectNotFoundException:
            logger.info("Pending object vanished before copy", extra=context)
            return self.resolve_absent(pending)
        except PreconditionFailedException:
            logger.info(f"{final_key} already exists, joining its promotion", extra=context)
            metageneration = None

        token = self._publish_token(pending, final_key, metageneration)

        try:
            self.store.delete(pending.bucket, pending.key)
        except ObjectNotFoundException:
            logger.info("Pending object already removed after copy", extra=context)

        url = public_download_url(pending.bucket, final_key, token)
        logger.info(f"Promoted object to {final_key}", extra={**context, "outcome": "approved"})
        self._sync_approval(pending, url)

        return HandlerOutcome.acknowledge(
            "approved",
            outcome=ModerationOutcome.approved,
            object_key=final_key,
            approved_url=url
        )

    def _publish_token(self, pending: PendingObject, final_key: str, metageneration: Optional[str]) -> str:
        """
        Mark the final object approved and return the token it carries.

        Writes are conditional on the metageneration last seen, so a token is
        never replaced once another delivery has published one.
        """
        for _ in range(MAX_PUBLISH_ATTEMPTS):
            if metageneration is None:
                current = self.store.get_object(pending.bucket, final_key)
                existing = approved_token(current.get("metadata"))
                if existing:
                    logger.info("Final object already approved, reusing its token", extra=pending.log_context())
                    return existing
                metageneration = current.get("metageneration")

            token = self.token_factory()
            metadata = {
                **pending.raw_metadata,
                MODERATION_METADATA_KEY: APPROVED_MARKER,
                DOWNLOAD_TOKEN_METADATA_KEY: token,
            }
            try:
                self.store.update_metadata(
                    pending.bucket, final_key, metadata, if_metageneration_match=metageneration
                )
                return token
            except PreconditionFailedException:
                logger.info("Final object changed during promotion, re-reading", extra=pending.log_context())
                metageneration = None

        raise StoreOperationException(
            f"Could not publish a download token for {final_key}",
            operation="update_metadata",
            details={"bucket": pending.bucket, "object_key": final_key}
        )

    def resolve_absent(self, pending: PendingObject) -> HandlerOutcome:
        """
        Settle a redelivered event whose pending object no longer exists.

        An approved object at the final key means the earlier delivery
        promoted it; otherwise it was rejected. Only reference sync runs on
        this path, never a copy, a delete or a strike.
        """
        context = pending.log_context()
        final_key = final_key_for(pending.key, self.pending_prefix)

        try:
            final_metadata = self.store.get_metadata(pending.bucket, final_key)
        except ObjectNotFoundException:
            final_metadata = None

        token = approved_token(final_metadata)
        if token:
            url = public_download_url(pending.bucket, final_key, token)
            logger.info("Object already promoted, syncing reference", extra={**context, "outcome": "approved"})
            self._sync_approval(pending, url)
            return HandlerOutcome.acknowledge(
                "already approved",
                outcome=ModerationOutcome.approved,
                object_key=final_key,
                approved_url=url
            )

        logger.info("Object already removed, clearing reference", extra={**context, "outcome": "rejected"})
        self._sync_rejection(pending)
        return HandlerOutcome.acknowledge(
            "already rejected",
            outcome=ModerationOutcome.rejected,
            object_key=pending.key
        )

    def _sync_rejection(self, pending: PendingObject) -> None:
        operation = self._reject_ops[pending.content_kind]
        if operation is None:
            logger.warning("Reference sync skipped for unknown content kind", extra=pending.log_context())
            return
        try:
            operation(pending.key)
        except DatabaseException as e:
            logger.error(
                f"Reference clear failed: {e.message}",
                extra=pending.log_context(),
                exc_info=True
            )

    def _sync_approval(self, pending: PendingObject, url: str) -> None:
        operation = self._approve_ops[pending.content_kind]
        if operation is None:
            logger.warning("Reference sync skipped for unknown content kind", extra=pending.log_context())
            return
        try:
            operation(pending.key, url)
        except DatabaseException as e:
            logger.error(
                f"Reference update failed: {e.message}",
                extra=pending.log_context(),
                exc_info=True
            )

    def _record_strike(self, pending: PendingObject) -> None:
        if not pending.owner_user_id:
            logger.warning("No owner id, strike not recorded", extra=pending.log_context())
            return
        try:
            self.strikes.add_strike(pending.owner_user_id)
        except DatabaseException as e:
            logger.error(
                f"Strike increment failed: {e.message}",
                extra=pending.log_context(),
                exc_info=True
            )
