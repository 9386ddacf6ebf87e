from functools import lru_cache
from typing import List, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global settings for the onboarding e-signature service.
    Values are read from the environment and from the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project
    project_name: str = "OnboardSign API"
    api_v1_str: str = "/api/v1"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./dev.db"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Portal URL used for links in notifications and signing redirects
    public_app_url: str = "http://localhost:3000"

    # Dropbox Sign (signing provider)
    dropbox_sign_api_key: Optional[SecretStr] = None
    dropbox_sign_client_id: Optional[str] = None
    dropbox_sign_base_url: str = "https://api.hellosign.com/v3"
    dropbox_sign_test_mode: bool = True
    signature_provider_timeout_seconds: float = 15.0

    # Inbound webhook
    signature_webhook_secret: Optional[SecretStr] = None
    signature_event_max_retries: int = 3

    def resolved_public_app_url(self) -> str:
        return (self.public_app_url or "").strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Return the cached global settings instance."""
    return Settings()


settings = get_settings()
