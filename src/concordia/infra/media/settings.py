"""Media storage configuration settings.

Loaded from environment variables with CLOUDINARY_ prefix.

Environment Variables:
    CLOUDINARY_CLOUD_NAME: Cloud name of the account
    CLOUDINARY_API_KEY: API key
    CLOUDINARY_API_SECRET: API secret used to sign requests
    CLOUDINARY_BASE_URL: API base URL
    CLOUDINARY_TIMEOUT: HTTP request timeout in seconds
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudinarySettings(BaseSettings):
    """Cloudinary configuration loaded from environment variables.

    Example:
        >>> CloudinarySettings().is_configured()
        False
    """

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    cloud_name: str = Field(default="", description="Cloud name of the account")
    api_key: str = Field(default="", description="API key")
    api_secret: str = Field(
        default="",
        repr=False,  # Security: never log the API secret
        description="API secret used to sign requests",
    )
    base_url: str = Field(
        default="https://api.cloudinary.com/v1_1",
        description="Cloudinary API base URL",
    )
    timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="HTTP request timeout in seconds",
    )

    def is_configured(self) -> bool:
        """True when every credential needed for signed deletes is set."""
        return bool(self.cloud_name and self.api_key and self.api_secret)


@lru_cache(maxsize=1)
def get_cloudinary_settings() -> CloudinarySettings:
    """Get singleton CloudinarySettings instance.

    Clear cache with ``get_cloudinary_settings.cache_clear()`` for testing.
    """
    return CloudinarySettings()
