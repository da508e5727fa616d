import requests
from fastapi import Depends

from moderation_worker.clients.google_auth import build_google_session
from moderation_worker.clients.storage_client import StorageClient
from moderation_worker.clients.vision_client import VisionClient
from moderation_worker.core.config import settings
from moderation_worker.db.session import SessionFactory, get_session_factory
from moderation_worker.services.moderation_service import ModerationService


def get_object_store():
    """Storage client for one invocation; its HTTP session is closed on exit."""
    session = build_google_session(settings.google_access_token)
    try:
        yield StorageClient(session, timeout=settings.http_timeout_seconds)
    finally:
        session.close()


def get_classifier():
    # An API key authorizes Vision on its own, otherwise use the service account
    if settings.vision_api_key:
        session = requests.Session()
    else:
        session = build_google_session(settings.google_access_token)
    try:
        yield VisionClient(session, api_key=settings.vision_api_key, timeout=settings.http_timeout_seconds)
    finally:
        session.close()


def get_moderation_service(
    store: StorageClient = Depends(get_object_store),
    classifier: VisionClient = Depends(get_classifier),
    session_factory: SessionFactory = Depends(get_session_factory)
) -> ModerationService:
    return ModerationService(store, classifier, session_factory)
