import requests
from typing import Optional

from moderation_worker.core.exceptions import ClassificationException
from moderation_worker.schemas.classification import ClassificationResult

VISION_ANNOTATE_URL = "https://vision.googleapis.com/v1/images:annotate"


class VisionClient:
    """Cloud Vision SafeSearch adapter.

    Every failure surfaces as ClassificationException so the event is
    redelivered; nothing here ever falls back to a safe or unsafe verdict.
    """

    def __init__(self, session: requests.Session, api_key: Optional[str] = None, timeout: float = 30.0):
        self.session = session
        self.api_key = api_key
        self.timeout = timeout

    def classify(self, gcs_uri: str) -> ClassificationResult:
        body = {
            "requests": [{
                "image": {"source": {"gcsImageUri": gcs_uri}},
                "features": [{"type": "SAFE_SEARCH_DETECTION"}],
            }]
        }
        params = {"key": self.api_key} if self.api_key else None

        try:
            response = self.session.post(VISION_ANNOTATE_URL, json=body, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ClassificationException(
                f"SafeSearch request failed: {str(e)}",
                details={"gcs_uri": gcs_uri}
            )

        if response.status_code != 200:
            raise ClassificationException(
                f"SafeSearch returned status {response.status_code}",
                details={
                    "gcs_uri": gcs_uri,
                    "status_code": response.status_code,
                    "response": response.text[:200]
                }
            )

        try:
            responses = response.json().get("responses") or []
        except ValueError as e:
            raise ClassificationException(
                f"SafeSearch returned invalid JSON: {str(e)}",
                details={"gcs_uri": gcs_uri}
            )

        first = responses[0] if responses else {}
        if first.get("error"):
            raise ClassificationException(
                f"SafeSearch annotation failed: {first['error'].get('message', 'unknown error')}",
                details={"gcs_uri": gcs_uri, "error": first["error"]}
            )

        annotation = first.get("safeSearchAnnotation")
        if not annotation:
            raise ClassificationException(
                "SafeSearch returned no annotation",
                details={"gcs_uri": gcs_uri}
            )
        return ClassificationResult.from_annotation(annotation)
