from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # Gemini
    google_ai_api_key: str = ""
    gemini_model: str = "gemini-3-flash-preview"
    gemini_timeout_seconds: float = 90.0

    # Pipeline
    scan_product_limit: int = Field(default=12, ge=1, le=20)
    max_image_bytes: int = 5 * 1024 * 1024  # 5 MB
    quota_cooldown_seconds: int = 60

    # Snapshot persistence
    snapshot_backend: Literal["memory", "r2"] = "memory"
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = "lens-inventory"

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""


settings = Settings()
