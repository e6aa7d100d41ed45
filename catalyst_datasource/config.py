from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Default Catalyst Center instance (used when a request carries none)
    catalyst_base_url: str = ""
    catalyst_username: str = ""
    catalyst_password: str = ""
    catalyst_api_token: str = ""  # Manual X-Auth-Token override, skips login
    catalyst_insecure_skip_verify: bool = False
    catalyst_ca_cert: str = ""
    catalyst_instance_uid: str = "default"

    # Upper bound for one dashboard query, checked between pages
    query_timeout_seconds: float = 120.0

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
