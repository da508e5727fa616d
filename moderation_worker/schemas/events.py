import enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class ContentKind(str, enum.Enum):
    sale_cover = "sale_cover"
    sale_item = "sale_item"
    profile_photo = "profile_photo"
    unknown = "unknown"

    @classmethod
    def from_metadata(cls, value: Optional[str]) -> "ContentKind":
        if not value:
            return cls.unknown
        try:
            kind = cls(value.strip().lower())
        except ValueError:
            return cls.unknown
        return kind


# ---- Wire shapes ----
class StorageObjectPayload(BaseModel):
    """Flat storage notification: ``{bucket, name, metadata}``."""

    bucket: str = ""
    name: str = ""
    metadata: Optional[Dict[str, str]] = None


class CloudEventEnvelope(BaseModel):
    """Structured CloudEvent: ``{data: {bucket, name, metadata}}``."""

    data: StorageObjectPayload = Field(default_factory=StorageObjectPayload)


# ---- Canonical record ----
class PendingObject(BaseModel):
    bucket: str
    key: str
    content_kind: ContentKind = ContentKind.unknown
    owner_user_id: str = ""
    raw_metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def gcs_uri(self) -> str:
        return f"gs://{self.bucket}/{self.key}"

    def log_context(self) -> dict:
        return {
            "bucket": self.bucket,
            "object_key": self.key,
            "content_kind": self.content_kind.value,
            "user_id": self.owner_user_id,
        }


class NormalizedEvent(BaseModel):
    """Normalizer result: a routable pending object or the reason to skip."""

    pending: Optional[PendingObject] = None
    skip_reason: Optional[str] = None
    # Outcome of the metadata lookup: None when no lookup was made
    object_exists: Optional[bool] = None

    @property
    def routable(self) -> bool:
        return self.pending is not None
