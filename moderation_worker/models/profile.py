from datetime import datetime
from sqlalchemy import Column, String, DateTime

from moderation_worker.db.session import Base


class Profile(Base):
    __tablename__ = "profiles"

    user_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=True)
    photo_url = Column(String, nullable=True, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow)
