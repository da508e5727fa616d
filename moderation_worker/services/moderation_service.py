from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from moderation_worker.core.config import settings
from moderation_worker.core.exceptions import (
    MalformedEventException,
    ModerationWorkerException,
    ObjectNotFoundException
)
from moderation_worker.core.logger import logger
from moderation_worker.schemas.classification import SafetyPolicy
from moderation_worker.schemas.events import PendingObject
from moderation_worker.schemas.outcomes import HandlerOutcome
from moderation_worker.services.event_normalizer import EventNormalizer
from moderation_worker.services.reference_repository import ReferenceRepository
from moderation_worker.services.strike_ledger import StrikeLedger
from moderation_worker.services.transition_engine import TransitionEngine, new_download_token


class ModerationService:
    """
    Handles one storage notification from delivery to acknowledgment.

    Flow: normalize the event, confirm the pending object still exists,
    classify it, then reject or promote it through the TransitionEngine.
    The document store is only opened once a transition is about to run.
    """

    def __init__(
        self,
        store,
        classifier,
        session_factory: Callable[[], Session],
        policy: Optional[SafetyPolicy] = None,
        pending_prefix: Optional[str] = None,
        owner_keys: Optional[Iterable[str]] = None,
        kind_keys: Optional[Iterable[str]] = None,
        token_factory: Callable[[], str] = new_download_token,
        ledger_factory: Callable[[Session], StrikeLedger] = StrikeLedger
    ):
        self.store = store
        self.classifier = classifier
        self.session_factory = session_factory
        self.policy = policy or SafetyPolicy.from_settings(
            settings.unsafe_categories,
            settings.unsafe_threshold
        )
        self.pending_prefix = pending_prefix or settings.pending_prefix
        self.token_factory = token_factory
        self.ledger_factory = ledger_factory
        self.normalizer = EventNormalizer(
            store,
            pending_prefix=self.pending_prefix,
            owner_keys=owner_keys or settings.owner_metadata_keys,
            kind_keys=kind_keys or settings.kind_metadata_keys
        )

    def handle(self, raw_body: bytes) -> HandlerOutcome:
        """
        Process one delivered event.

        Args:
            raw_body: Request body exactly as delivered

        Returns:
            HandlerOutcome: acknowledged for terminal results (including
            skipped events), retry when the object's state is unresolved

        Raises:
            MalformedEventException: If the body cannot be parsed
        """
        try:
            return self._handle(raw_body)
        except MalformedEventException:
            raise
        except ModerationWorkerException as e:
            logger.error(
                f"Moderation failed, requesting redelivery: {e.message}",
                extra={"outcome": "retry"}
            )
            return HandlerOutcome.retriable(e.message)

    def _handle(self, raw_body: bytes) -> HandlerOutcome:
        normalized = self.normalizer.normalize(raw_body)
        if not normalized.routable:
            return HandlerOutcome.acknowledge(normalized.skip_reason)

        pending = normalized.pending
        exists = normalized.object_exists
        if exists is None:
            exists = self._object_exists(pending)

        if not exists:
            logger.info("Pending object already resolved", extra=pending.log_context())
            return self._transition(lambda engine: engine.resolve_absent(pending))

        logger.info(f"Running SafeSearch on {pending.gcs_uri}", extra=pending.log_context())
        result = self.classifier.classify(pending.gcs_uri)
        unsafe = result.violates(self.policy)
        logger.info(
            f"SafeSearch result {result.summary()} unsafe={unsafe}",
            extra=pending.log_context()
        )

        if unsafe:
            return self._transition(lambda engine: engine.reject(pending))
        return self._transition(lambda engine: engine.approve(pending))

    def _object_exists(self, pending: PendingObject) -> bool:
        try:
            self.store.get_metadata(pending.bucket, pending.key)
        except ObjectNotFoundException:
            return False
        return True

    def _transition(self, step: Callable[[TransitionEngine], HandlerOutcome]) -> HandlerOutcome:
        db = self.session_factory()
        try:
            engine = TransitionEngine(
                self.store,
                ReferenceRepository(db),
                self.ledger_factory(db),
                pending_prefix=self.pending_prefix,
                token_factory=self.token_factory
            )
            outcome = step(engine)
        finally:
            db.close()

        logger.info(
            f"Event handled: {outcome.reason}",
            extra={"object_key": outcome.object_key, "outcome": outcome.status.value}
        )
        return outcome
