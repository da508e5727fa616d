import enum
from typing import Iterable, Tuple

from pydantic import BaseModel


class Likelihood(enum.IntEnum):
    """Ordinal SafeSearch rating; comparisons follow severity."""

    UNKNOWN = 0
    VERY_UNLIKELY = 1
    UNLIKELY = 2
    POSSIBLE = 3
    LIKELY = 4
    VERY_LIKELY = 5

    @classmethod
    def parse(cls, value) -> "Likelihood":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.__members__.get(value.strip().upper(), cls.UNKNOWN)
        return cls.UNKNOWN


CATEGORIES = ("adult", "violence", "racy", "spoof", "medical")


class SafetyPolicy(BaseModel):
    """Rejection policy: any listed category at or above threshold is unsafe."""

    categories: Tuple[str, ...] = ("adult", "violence")
    threshold: Likelihood = Likelihood.LIKELY

    @classmethod
    def from_settings(cls, categories: Iterable[str], threshold: str) -> "SafetyPolicy":
        names = tuple(c.strip().lower() for c in categories if c.strip().lower() in CATEGORIES)
        return cls(categories=names, threshold=Likelihood.parse(threshold))


DEFAULT_POLICY = SafetyPolicy()


class ClassificationResult(BaseModel):
    adult: Likelihood = Likelihood.UNKNOWN
    violence: Likelihood = Likelihood.UNKNOWN
    racy: Likelihood = Likelihood.UNKNOWN
    spoof: Likelihood = Likelihood.UNKNOWN
    medical: Likelihood = Likelihood.UNKNOWN

    @classmethod
    def from_annotation(cls, annotation: dict) -> "ClassificationResult":
        return cls(**{name: Likelihood.parse(annotation.get(name)) for name in CATEGORIES})

    @property
    def is_unsafe(self) -> bool:
        return self.violates(DEFAULT_POLICY)

    def violates(self, policy: SafetyPolicy) -> bool:
        return any(getattr(self, name) >= policy.threshold for name in policy.categories)

    def summary(self) -> dict:
        return {name: getattr(self, name).name for name in CATEGORIES}
