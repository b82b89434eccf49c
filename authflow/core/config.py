from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(default="development")
    log_level: Optional[str] = Field(default=None)

    # Account linking API (Firebase <-> Nostr pubkey associations)
    link_api_url: str = Field(default="http://localhost:8787/v1")
    link_api_timeout: float = Field(default=15.0)
    link_api_max_retries: int = Field(default=3, ge=1)
    link_api_retry_wait: float = Field(default=1.0)

    # Legacy migration: time allowed for a freshly activated login to become
    # visible to the signer before wallet/profile setup starts.
    activation_settle_seconds: float = Field(default=0.5)

    # Direct login: treat a failed profile sync as a failed login.
    login_profile_sync_fatal: bool = Field(default=False)

    # Display name used when a generated account has no staged profile
    fallback_display_name: Optional[str] = Field(default=None)

    @field_validator("link_api_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("activation_settle_seconds", "link_api_timeout", "link_api_retry_wait", mode="after")
    @classmethod
    def non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_production_link_api_url(self):
        """Linking requests carry identity tokens, so production must use HTTPS"""
        if self.environment == "production" and not self.link_api_url.startswith("https://"):
            raise ValueError(
                "LINK_API_URL must use HTTPS in production. "
                f"Got: {self.link_api_url}"
            )
        return self


settings = Settings()
