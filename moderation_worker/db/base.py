# Import all models so they are registered on Base.metadata
from moderation_worker.db.session import Base
from moderation_worker.models.sale import Sale, Item
from moderation_worker.models.profile import Profile
from moderation_worker.models.user_flag import UserFlag

__all__ = ["Base", "Sale", "Item", "Profile", "UserFlag"]
