from moderation_worker.core.config import settings
from moderation_worker.core.exceptions import ConfigurationException
from moderation_worker.core.logger import logger
from moderation_worker.db.base import Base
from moderation_worker.db.session import get_engine


def init_db():
    if not settings.database_url:
        raise ConfigurationException("DATABASE_URL is not set", setting="database_url")
    engine = get_engine(settings.database_url, settings.database_name)
    logger.info("Creating document store tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created successfully!")

if __name__ == "__main__":
    init_db()
