import requests
from requests.auth import AuthBase
from typing import Optional

from moderation_worker.core.exceptions import ConfigurationException

# Cloud Run / GCE metadata server, available to the worker's service account
METADATA_TOKEN_URL = (
    "http://metadata.google.internal/computeMetadata/v1/"
    "instance/service-accounts/default/token"
)


def fetch_access_token(timeout: float = 5.0) -> str:
    try:
        response = requests.get(
            METADATA_TOKEN_URL,
            headers={"Metadata-Flavor": "Google"},
            timeout=timeout
        )
        response.raise_for_status()
        return response.json()["access_token"]
    except (requests.exceptions.RequestException, KeyError, ValueError) as e:
        raise ConfigurationException(
            f"No Google credentials available: {str(e)}",
            setting="google_access_token"
        )


class GoogleBearerAuth(AuthBase):
    """Bearer auth that fetches a metadata-server token on first use."""

    def __init__(self, access_token: Optional[str] = None, timeout: float = 5.0):
        self.access_token = access_token
        self.timeout = timeout

    def __call__(self, request):
        if not self.access_token:
            self.access_token = fetch_access_token(timeout=self.timeout)
        request.headers["Authorization"] = f"Bearer {self.access_token}"
        return request


def build_google_session(access_token: Optional[str] = None) -> requests.Session:
    """HTTP session for Google APIs, created once per invocation."""
    session = requests.Session()
    session.auth = GoogleBearerAuth(access_token)
    return session
