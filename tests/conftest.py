"""Shared fixtures: in-memory document store, fake object store and classifier."""

import itertools

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from moderation_worker.core.exceptions import (
    ClassificationException,
    ObjectNotFoundException,
    PreconditionFailedException,
    StoreOperationException
)
from moderation_worker.db.base import Base
from moderation_worker.schemas.classification import ClassificationResult, Likelihood
from moderation_worker.services.moderation_service import ModerationService

SQLALCHEMY_DATABASE_URL = "sqlite://"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeObjectStore:
    """In-memory object store mirroring Cloud Storage semantics."""

    def __init__(self):
        self.objects = {}
        self.metagenerations = {}
        self.calls = []
        self.failures = {}

    def put(self, bucket, key, metadata=None):
        self.objects[(bucket, key)] = dict(metadata or {})
        self.metagenerations[(bucket, key)] = 1

    def exists(self, bucket, key):
        return (bucket, key) in self.objects

    def fail(self, operation, exception=None):
        self.failures[operation] = exception or StoreOperationException(
            f"{operation} unavailable", operation=operation
        )

    def _check(self, operation, bucket, key):
        self.calls.append((operation, bucket, key))
        if operation in self.failures:
            raise self.failures[operation]
        if (bucket, key) not in self.objects:
            raise ObjectNotFoundException(bucket, key, operation=operation)

    def _resource(self, bucket, key):
        return {
            "name": key,
            "metadata": dict(self.objects[(bucket, key)]),
            "metageneration": str(self.metagenerations[(bucket, key)]),
        }

    def get_object(self, bucket, key):
        self._check("get_metadata", bucket, key)
        return self._resource(bucket, key)

    def get_metadata(self, bucket, key):
        return self.get_object(bucket, key)["metadata"]

    def delete(self, bucket, key):
        self._check("delete", bucket, key)
        del self.objects[(bucket, key)]
        del self.metagenerations[(bucket, key)]

    def copy(self, src_bucket, src_key, dst_bucket, dst_key, if_generation_match=None):
        self._check("copy", src_bucket, src_key)
        if if_generation_match == 0 and (dst_bucket, dst_key) in self.objects:
            raise PreconditionFailedException(dst_bucket, dst_key, operation="copy")
        self.put(dst_bucket, dst_key, self.objects[(src_bucket, src_key)])
        return self._resource(dst_bucket, dst_key)

    def update_metadata(self, bucket, key, metadata, if_metageneration_match=None):
        self._check("update_metadata", bucket, key)
        current = self.metagenerations[(bucket, key)]
        if if_metageneration_match is not None and str(if_metageneration_match) != str(current):
            raise PreconditionFailedException(bucket, key, operation="update_metadata")
        self.objects[(bucket, key)].update(metadata)
        self.metagenerations[(bucket, key)] = current + 1
        return dict(self.objects[(bucket, key)])

    def count(self, operation):
        return len([c for c in self.calls if c[0] == operation])


class FakeClassifier:
    def __init__(self, result=None, error=None):
        self.result = result or safe_result()
        self.error = error
        self.calls = []

    def classify(self, gcs_uri):
        self.calls.append(gcs_uri)
        if self.error:
            raise self.error
        return self.result


def safe_result():
    return ClassificationResult(
        adult=Likelihood.VERY_UNLIKELY,
        violence=Likelihood.UNLIKELY,
        racy=Likelihood.POSSIBLE,
        spoof=Likelihood.VERY_UNLIKELY,
        medical=Likelihood.UNLIKELY,
    )


def unsafe_result(**ratings):
    values = {"adult": Likelihood.LIKELY}
    values.update(ratings)
    return safe_result().model_copy(update=values)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    return TestingSessionLocal


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def tokens():
    counter = itertools.count(1)
    return lambda: f"token-{next(counter)}"


@pytest.fixture
def service(store, classifier, session_factory, tokens):
    return ModerationService(store, classifier, session_factory, token_factory=tokens)


@pytest.fixture
def failing_classifier():
    return FakeClassifier(error=ClassificationException("quota exceeded"))
