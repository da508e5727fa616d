from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime

from moderation_worker.db.session import Base


class UserFlag(Base):
    """Accumulated moderation strikes for one user."""

    __tablename__ = "user_flags"

    user_id = Column(String, primary_key=True)
    strikes = Column(Integer, default=0, nullable=False)
    last_strike_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow)
