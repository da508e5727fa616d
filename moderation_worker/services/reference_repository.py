from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from moderation_worker.core.exceptions import DatabaseException
from moderation_worker.core.logger import logger
from moderation_worker.models.profile import Profile
from moderation_worker.models.sale import Item, Sale


class ReferenceRepository:
    """
    Keeps sale and profile documents in sync with moderated objects.

    Every operation is keyed by the pending object path, the only identifier
    known at event time. A document is matched when its reference field still
    equals that path; rejecting clears the field and approving replaces it
    with the public URL. Matching nothing is a no-op.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock

    def reject_sale_cover(self, pending_path: str) -> int:
        return self._replace(Sale, "sale_cover_photo", pending_path, None, "reject_sale_cover")

    def approve_sale_cover(self, pending_path: str, url: str) -> int:
        return self._replace(Sale, "sale_cover_photo", pending_path, url, "approve_sale_cover")

    def reject_item_image(self, pending_path: str) -> int:
        return self._replace(Item, "image_url", pending_path, None, "reject_item_image")

    def approve_item_image(self, pending_path: str, url: str) -> int:
        return self._replace(Item, "image_url", pending_path, url, "approve_item_image")

    def reject_profile_photo(self, pending_path: str) -> int:
        return self._replace(Profile, "photo_url", pending_path, None, "reject_profile_photo", touch=True)

    def approve_profile_photo(self, pending_path: str, url: str) -> int:
        return self._replace(Profile, "photo_url", pending_path, url, "approve_profile_photo", touch=True)

    def _replace(
        self,
        model,
        field: str,
        pending_path: str,
        value: Optional[str],
        operation: str,
        touch: bool = False
    ) -> int:
        if not pending_path or not pending_path.strip():
            return 0
        # Approving without a URL would erase the reference
        if value is not None and not value.strip():
            return 0

        values = {field: value}
        if touch:
            values["updated_at"] = self.clock()

        column = getattr(model, field)
        try:
            matched = self.db.query(model).filter(column == pending_path).update(
                values, synchronize_session=False
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseException(
                f"Failed to update {model.__tablename__}.{field}: {str(e)}",
                operation=operation,
                details={"pending_path": pending_path}
            )

        if matched == 0:
            logger.warning(
                f"No {model.__tablename__} document references pending path",
                extra={"object_key": pending_path}
            )
        else:
            logger.info(
                f"{operation} updated {matched} {model.__tablename__} document(s)",
                extra={"object_key": pending_path}
            )
        return matched
