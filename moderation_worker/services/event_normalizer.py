"""
Event normalization for storage notifications.

Inbound notifications arrive either as a flat storage object payload
(``{bucket, name, metadata}``) or as a structured CloudEvent whose payload is
nested under ``data``. Both are reduced to a single PendingObject record.
"""

import json
from typing import Any, Dict, Iterable, Optional

from moderation_worker.core.exceptions import (
    MalformedEventException,
    ObjectNotFoundException,
    StoreOperationException
)
from moderation_worker.core.logger import logger
from moderation_worker.schemas.events import (
    CloudEventEnvelope,
    ContentKind,
    NormalizedEvent,
    PendingObject,
    StorageObjectPayload
)


def parse_event_body(raw_body: bytes) -> Dict[str, Any]:
    """
    Decode a raw request body into a JSON object.

    Raises:
        MalformedEventException: If the body is not valid JSON or not an object
    """
    try:
        body = json.loads(raw_body or b"")
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedEventException(
            f"Event body is not valid JSON: {str(e)}",
            details={"body_length": len(raw_body or b"")}
        )
    if not isinstance(body, dict):
        raise MalformedEventException(
            "Event body is not a JSON object",
            details={"body_type": type(body).__name__}
        )
    return body


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _coerce_metadata(value: Any) -> Optional[Dict[str, str]]:
    if not isinstance(value, dict):
        return None
    return {str(k): str(v) for k, v in value.items() if v is not None}


def _payload_from(body: Dict[str, Any]) -> StorageObjectPayload:
    return StorageObjectPayload(
        bucket=_as_text(body.get("bucket")),
        name=_as_text(body.get("name")),
        metadata=_coerce_metadata(body.get("metadata"))
    )


def extract_payload(body: Dict[str, Any]) -> StorageObjectPayload:
    """Flat shape first, then the CloudEvent envelope when bucket or name is empty."""
    payload = _payload_from(body)
    if payload.bucket and payload.name:
        return payload

    data = body.get("data")
    if isinstance(data, dict):
        envelope = CloudEventEnvelope(data=_payload_from(data))
        if envelope.data.bucket and envelope.data.name:
            logger.info(
                "Parsed storage payload from CloudEvent envelope",
                extra={"bucket": envelope.data.bucket, "object_key": envelope.data.name}
            )
            return envelope.data
    return payload


def first_value(metadata: Dict[str, str], keys: Iterable[str]) -> str:
    for key in keys:
        value = _as_text(metadata.get(key))
        if value:
            return value
    return ""


class EventNormalizer:
    """Turns raw notifications into routable PendingObject records."""

    def __init__(
        self,
        store,
        pending_prefix: str = "pending/",
        owner_keys: Iterable[str] = ("userId", "owner"),
        kind_keys: Iterable[str] = ("type", "kind")
    ):
        self.store = store
        self.pending_prefix = pending_prefix
        self.owner_keys = tuple(owner_keys)
        self.kind_keys = tuple(kind_keys)

    def normalize(self, raw_body: bytes) -> NormalizedEvent:
        """
        Normalize one inbound event.

        Args:
            raw_body: Request body exactly as delivered

        Returns:
            NormalizedEvent carrying either the pending object or a skip reason

        Raises:
            MalformedEventException: If the body cannot be parsed at all
            StoreOperationException: If the metadata lookup fails for any
                reason other than the object being gone
        """
        body = parse_event_body(raw_body)
        payload = extract_payload(body)

        if not payload.bucket or not payload.name:
            logger.info(
                "Skipping event: bucket or name is empty after all parse attempts",
                extra={"bucket": payload.bucket, "object_key": payload.name}
            )
            return NormalizedEvent(skip_reason="missing bucket or object name")

        if not payload.name.startswith(self.pending_prefix):
            logger.info(
                "Skipping non-pending object",
                extra={"bucket": payload.bucket, "object_key": payload.name}
            )
            return NormalizedEvent(skip_reason="object is not pending moderation")

        if payload.name == self.pending_prefix or payload.name.endswith("/"):
            logger.info(
                "Skipping folder placeholder",
                extra={"bucket": payload.bucket, "object_key": payload.name}
            )
            return NormalizedEvent(skip_reason="object is a folder placeholder")

        metadata = dict(payload.metadata or {})
        object_exists = None

        if not self._has_routing_metadata(metadata):
            logger.info(
                "Routing metadata missing from event, fetching object metadata",
                extra={"bucket": payload.bucket, "object_key": payload.name}
            )
            try:
                fetched = self.store.get_metadata(payload.bucket, payload.name)
                object_exists = True
                metadata = {**fetched, **metadata}
            except ObjectNotFoundException:
                object_exists = False
                logger.info(
                    "Pending object no longer exists",
                    extra={"bucket": payload.bucket, "object_key": payload.name}
                )
            except StoreOperationException as e:
                # Retried so owner and kind are known before any transition
                logger.warning(
                    f"Object metadata lookup failed: {e.message}",
                    extra={"bucket": payload.bucket, "object_key": payload.name}
                )
                raise

        pending = PendingObject(
            bucket=payload.bucket,
            key=payload.name,
            content_kind=ContentKind.from_metadata(first_value(metadata, self.kind_keys)),
            owner_user_id=first_value(metadata, self.owner_keys),
            raw_metadata=metadata
        )

        if not pending.owner_user_id:
            logger.warning("Owner id is empty, strikes cannot be recorded", extra=pending.log_context())
        if pending.content_kind == ContentKind.unknown:
            logger.warning("Content kind is unknown, references cannot be synced", extra=pending.log_context())

        return NormalizedEvent(pending=pending, object_exists=object_exists)

    def _has_routing_metadata(self, metadata: Dict[str, str]) -> bool:
        return bool(first_value(metadata, self.owner_keys)) and bool(first_value(metadata, self.kind_keys))
