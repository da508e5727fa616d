import enum
from typing import Optional

from pydantic import BaseModel


class ModerationOutcome(str, enum.Enum):
    rejected = "rejected"
    approved = "approved"


class HandlerStatus(str, enum.Enum):
    acknowledged = "acknowledged"
    retry = "retry"


class HandlerOutcome(BaseModel):
    """Result of one event invocation, mapped to a status code by the router."""

    status: HandlerStatus
    reason: str
    outcome: Optional[ModerationOutcome] = None
    object_key: Optional[str] = None
    approved_url: Optional[str] = None

    @classmethod
    def acknowledge(cls, reason: str, **kwargs) -> "HandlerOutcome":
        return cls(status=HandlerStatus.acknowledged, reason=reason, **kwargs)

    @classmethod
    def retriable(cls, reason: str, **kwargs) -> "HandlerOutcome":
        return cls(status=HandlerStatus.retry, reason=reason, **kwargs)

    @property
    def acknowledged(self) -> bool:
        return self.status == HandlerStatus.acknowledged


class ReconciliationReport(BaseModel):
    scanned: int = 0
    promoted: int = 0
    cleared: int = 0
    in_flight: int = 0
    errors: int = 0
