from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from moderation_worker.core.config import settings
from moderation_worker.core.exceptions import ConfigurationException

Base = declarative_base()

SessionFactory = Callable[[], Session]


@lru_cache(maxsize=4)
def get_engine(database_url: str, database_name: Optional[str] = None) -> Engine:
    url = make_url(database_url)
    if database_name and not url.drivername.startswith("sqlite"):
        url = url.set(database=database_name)
    return create_engine(url, future=True, pool_pre_ping=True)


def build_session_factory(
    database_url: Optional[str] = None,
    database_name: Optional[str] = None,
) -> sessionmaker:
    """Session factory for the configured document store.

    Raises ConfigurationException when no connection string is configured.
    """
    database_url = database_url or settings.database_url
    if not database_url:
        raise ConfigurationException(
            "DATABASE_URL is not set",
            setting="database_url"
        )
    engine = get_engine(database_url, database_name or settings.database_name)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


# Dependency
def get_session_factory() -> SessionFactory:
    """Lazily resolve the session factory so no-op events never touch config."""

    def open_session() -> Session:
        return build_session_factory()()

    return open_session
