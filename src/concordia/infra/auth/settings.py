"""Identity provider configuration settings.

Loaded from environment variables with IDENTITY_TOOLKIT_ prefix.

Environment Variables:
    IDENTITY_TOOLKIT_API_KEY: Web API key of the project
    IDENTITY_TOOLKIT_BASE_URL: REST API base URL (point at the emulator in development)
    IDENTITY_TOOLKIT_TIMEOUT: HTTP request timeout in seconds
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IdentityToolkitSettings(BaseSettings):
    """Identity Toolkit configuration loaded from environment variables.

    Example:
        >>> settings = IdentityToolkitSettings()
        >>> settings.base_url
        'https://identitytoolkit.googleapis.com/v1'
        >>> settings.is_configured()
        False
    """

    model_config = SettingsConfigDict(
        env_prefix="IDENTITY_TOOLKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: str = Field(
        default="",
        repr=False,  # Security: never log the API key
        description="Web API key of the project",
    )
    base_url: str = Field(
        default="https://identitytoolkit.googleapis.com/v1",
        description="Identity Toolkit REST API base URL",
    )
    timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="HTTP request timeout in seconds",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("IDENTITY_TOOLKIT_BASE_URL must be a valid HTTP(S) URL")
        return v.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.api_key)


@lru_cache(maxsize=1)
def get_identity_toolkit_settings() -> IdentityToolkitSettings:
    """Get singleton IdentityToolkitSettings instance.

    Clear cache with ``get_identity_toolkit_settings.cache_clear()`` for testing.
    """
    return IdentityToolkitSettings()
