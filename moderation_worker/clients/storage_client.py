import requests
from typing import Any, Dict, Optional
from urllib.parse import quote

from moderation_worker.core.exceptions import (
    ObjectNotFoundException,
    PreconditionFailedException,
    StoreOperationException
)

STORAGE_API_URL = "https://storage.googleapis.com/storage/v1"


def _encode(segment: str) -> str:
    return quote(segment, safe="")


class StorageClient:
    """Minimal Cloud Storage JSON API client for the moderation operations."""

    def __init__(self, session: requests.Session, timeout: float = 30.0):
        self.session = session
        self.timeout = timeout

    def _object_url(self, bucket: str, key: str) -> str:
        return f"{STORAGE_API_URL}/b/{_encode(bucket)}/o/{_encode(key)}"

    def _request(self, method: str, url: str, operation: str, bucket: str, key: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise StoreOperationException(
                f"Storage {operation} request failed: {str(e)}",
                operation=operation,
                details={"bucket": bucket, "object_key": key}
            )

        if response.status_code == 404:
            raise ObjectNotFoundException(bucket, key, operation=operation)
        if response.status_code == 412:
            raise PreconditionFailedException(bucket, key, operation=operation)
        if response.status_code >= 300:
            raise StoreOperationException(
                f"Storage {operation} returned status {response.status_code}",
                operation=operation,
                details={
                    "bucket": bucket,
                    "object_key": key,
                    "status_code": response.status_code,
                    "response": response.text[:200]
                }
            )
        return response

    def get_object(self, bucket: str, key: str) -> Dict[str, Any]:
        """Object resource, including ``metadata`` and ``metageneration``."""
        response = self._request("GET", self._object_url(bucket, key), "get_metadata", bucket, key)
        return response.json()

    def get_metadata(self, bucket: str, key: str) -> Dict[str, str]:
        return dict(self.get_object(bucket, key).get("metadata") or {})

    def delete(self, bucket: str, key: str) -> None:
        self._request("DELETE", self._object_url(bucket, key), "delete", bucket, key)

    def copy(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
        if_generation_match: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Copy an object and return the destination object resource.

        ``if_generation_match=0`` only creates the destination when it does
        not exist yet; an existing destination raises
        PreconditionFailedException for the destination key.
        """
        url = f"{self._object_url(src_bucket, src_key)}/copyTo/b/{_encode(dst_bucket)}/o/{_encode(dst_key)}"
        params = {}
        if if_generation_match is not None:
            params["ifGenerationMatch"] = str(if_generation_match)
        try:
            response = self._request("POST", url, "copy", src_bucket, src_key, json={}, params=params)
        except PreconditionFailedException:
            raise PreconditionFailedException(dst_bucket, dst_key, operation="copy")
        return response.json()

    def update_metadata(
        self,
        bucket: str,
        key: str,
        metadata: Dict[str, str],
        if_metageneration_match: Optional[str] = None
    ) -> Dict[str, str]:
        # PATCH merges the given keys into the existing custom metadata
        params = {}
        if if_metageneration_match is not None:
            params["ifMetagenerationMatch"] = str(if_metageneration_match)
        response = self._request(
            "PATCH",
            self._object_url(bucket, key),
            "update_metadata",
            bucket,
            key,
            json={"metadata": metadata},
            params=params
        )
        return dict(response.json().get("metadata") or {})
