"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables (or a .env file).
Using Pydantic's BaseSettings means we get:
- Type validation at startup
- Documentation of what's required vs optional
- Easy testing with different configurations

The hotlink-protection options are turned into an immutable
`AllowListConfig` by `to_allow_list_config`. That is where the rules for
the allow-list are enforced, so a bad value surfaces as a
`ConfigurationError` rather than as a half-working gateway.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.access.models import (
    DEFAULT_CACHE_CONTROL,
    DEFAULT_STORE_IDENTIFIER,
    AllowListConfig,
    ConfigurationError,
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like allowed_origins), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Hotlink Guard"

    # Hotlink Protection
    allowed_origins: str = Field(
        default="",
        description="Comma-separated origins allowed to embed media, e.g. https://example.com. Required."
    )
    block_no_referer: Optional[str] = Field(
        default=None,
        description="Block requests without a Referer header. Anything other than 'false' blocks."
    )
    cache_control: str = Field(
        default=DEFAULT_CACHE_CONTROL,
        description="Cache-Control header sent with every served object."
    )
    r2_bucket_binding: str = Field(
        default=DEFAULT_STORE_IDENTIFIER,
        description="Binding name the gateway reads objects from."
    )

    # R2/S3 Storage Configuration
    r2_account_id: str = Field(
        default="",
        description="Cloudflare account ID for R2"
    )
    r2_access_key_id: str = Field(
        default="",
        description="R2 access key ID"
    )
    r2_secret_access_key: str = Field(
        default="",
        description="R2 secret access key"
    )
    r2_bucket_name: str = Field(
        default="media",
        description="Physical R2 bucket the binding points at"
    )
    r2_endpoint_url: Optional[str] = Field(
        default=None,
        description="R2 endpoint URL. Auto-constructed from account_id if not provided."
    )
    r2_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real R2. Enables local dev without object storage."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse comma-separated origins into a list, dropping blanks."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def block_missing_referer(self) -> bool:
        """Only an explicit, case-insensitive 'false' turns blocking off."""
        if self.block_no_referer is None:
            return True
        return self.block_no_referer.lower() != "false"

    @property
    def r2_endpoint(self) -> str:
        """
        Construct R2 endpoint URL from account ID.

        R2 endpoints follow the pattern: https://{account_id}.r2.cloudflarestorage.com
        """
        if self.r2_endpoint_url:
            return self.r2_endpoint_url
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    def to_allow_list_config(self) -> AllowListConfig:
        """
        Build the immutable allow-list configuration.

        Raises:
            ConfigurationError: If ALLOWED_ORIGINS is missing, empty,
                or contains something that isn't a bare origin
        """
        origins = self.allowed_origins_list
        if not origins:
            raise ConfigurationError(
                "ALLOWED_ORIGINS must contain at least one origin"
            )

        return AllowListConfig(
            allowed_origins=tuple(origins),
            block_missing_referer=self.block_missing_referer,
            cache_control_value=self.cache_control,
            store_identifier=self.r2_bucket_binding,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        """
        missing = []

        if not self.allowed_origins_list:
            missing.append("ALLOWED_ORIGINS")

        # R2 only required if not in mock mode
        if not self.r2_mock_mode:
            if not self.r2_account_id and not self.r2_endpoint_url:
                missing.append("R2_ACCOUNT_ID or R2_ENDPOINT_URL")
            if not self.r2_access_key_id:
                missing.append("R2_ACCESS_KEY_ID")
            if not self.r2_secret_access_key:
                missing.append("R2_SECRET_ACCESS_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process and never change at runtime.
    For tests, call get_settings.cache_clear() to reset.
    """
    return Settings()
