from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from moderation_worker.core.exceptions import DatabaseException
from moderation_worker.core.logger import logger
from moderation_worker.models.user_flag import UserFlag


class StrikeLedger:
    """Per-user policy violation counter."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock

    def add_strike(self, user_id: str, now: Optional[datetime] = None) -> int:
        """
        Record one strike against a user, creating the flag on first strike.

        Args:
            user_id: Owner of the rejected content
            now: Strike timestamp, defaults to the ledger clock

        Returns:
            The user's strike count after the increment

        Raises:
            DatabaseException: If the document store update fails
        """
        now = now or self.clock()
        try:
            if not self._increment(user_id, now):
                self.db.add(UserFlag(user_id=user_id, strikes=1, last_strike_at=now, updated_at=now))
                try:
                    self.db.commit()
                except IntegrityError:
                    # Concurrent first strike created the row
                    self.db.rollback()
                    self._increment(user_id, now)
                    self.db.commit()
            else:
                self.db.commit()

            count = self.db.query(UserFlag.strikes).filter(UserFlag.user_id == user_id).scalar()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseException(
                f"Failed to add strike: {str(e)}",
                operation="add_strike",
                details={"user_id": user_id}
            )

        logger.info(f"Strike recorded, total {count}", extra={"user_id": user_id})
        return count

    def _increment(self, user_id: str, now: datetime) -> int:
        return self.db.query(UserFlag).filter(UserFlag.user_id == user_id).update(
            {
                UserFlag.strikes: UserFlag.strikes + 1,
                UserFlag.last_strike_at: now,
                UserFlag.updated_at: now,
            },
            synchronize_session=False
        )
