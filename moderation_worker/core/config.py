from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Rummage Moderation Worker"
    database_url: Optional[str] = None
    database_name: Optional[str] = "rummage"
    storage_bucket: Optional[str] = None
    pending_prefix: str = "pending/"
    owner_metadata_keys: List[str] = ["userId", "owner"]
    kind_metadata_keys: List[str] = ["type", "kind"]
    unsafe_categories: List[str] = ["adult", "violence"]
    unsafe_threshold: str = "LIKELY"
    vision_api_key: Optional[str] = None
    google_access_token: Optional[str] = None
    http_timeout_seconds: float = 30.0
    invocation_timeout_seconds: float = 60.0
    log_level: str = "INFO"
    log_file: Optional[str] = None

    class Config:
        env_file = ".env"

settings = Settings()
