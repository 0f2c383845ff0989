from __future__ import annotations

from functools import lru_cache

from pydantic import NonNegativeInt, PositiveFloat, PositiveInt, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the preference store.

    Values are loaded from environment variables by default and may be
    overridden via CLI flags by the application entrypoint.
    """

    # Remote document
    # Note: allow empty by default so CLI/tests can run without credentials.
    # The gist transport validates presence when contacting the API.
    gist_id: str = ""
    github_token: SecretStr = SecretStr("")
    gist_api_url: str = "https://api.github.com/gists"
    gist_filename: str = "preferences.json"
    request_timeout_s: PositiveFloat = 15.0

    # Field-level encryption; an empty key stores sensitive fields in plaintext
    encryption_key: SecretStr = SecretStr("")
    encrypt_item_statuses: bool = False

    # Rate limiting
    rate_limit: NonNegativeInt = 10
    rate_window_s: PositiveFloat = 60.0
    cleanup_interval_s: PositiveFloat = 300.0

    # Housekeeping
    seen_retention_days: PositiveInt = 90

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    @property
    def encryption_enabled(self) -> bool:
        return bool(self.encryption_key.get_secret_value())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
