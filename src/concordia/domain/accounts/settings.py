"""Account engine configuration using Pydantic settings.

Tunes paging, batching, fan-out, retry and step timeouts for the account
workflows. Settings are loaded from environment variables with the
``ACCOUNTS_`` prefix.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from concordia.foundation.application.retry import RetryPolicy
from concordia.foundation.domain.user_value_objects import DEFAULT_PROFILE_PHOTO

# Hard ceiling on operations per atomic batch imposed by the document store.
STORE_BATCH_CEILING = 500


class AccountEngineSettings(BaseSettings):
    """Configuration for the account workflows.

    Environment Variables:
        ACCOUNTS_PAGE_SIZE: Documents per page in reconciliation scans (default: 200)
        ACCOUNTS_BATCH_LIMIT: Operations per atomic batch commit (default: 450, max 500)
        ACCOUNTS_FANOUT_LIMIT: Concurrent fan-out calls per operation (default: 4)
        ACCOUNTS_RETRY_ATTEMPTS: Attempts for transient failures (default: 3)
        ACCOUNTS_RETRY_INITIAL_WAIT: Backoff multiplier in seconds (default: 0.2)
        ACCOUNTS_RETRY_MAX_WAIT: Longest single backoff in seconds (default: 2.0)
        ACCOUNTS_STEP_TIMEOUT: Time bound for one external step in seconds (default: 15)
        ACCOUNTS_DEFAULT_PROFILE_PHOTO: Sentinel photo for users without one

    Example:
        >>> settings = AccountEngineSettings()
        >>> settings.batch_limit
        450
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCOUNTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    page_size: int = Field(
        default=200,
        ge=1,
        le=1000,
        description="Documents per page in reconciliation scans",
    )
    batch_limit: int = Field(
        default=450,
        ge=1,
        le=STORE_BATCH_CEILING,
        description="Operations per atomic batch commit",
    )
    fanout_limit: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Concurrent fan-out calls per operation",
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts for transient failures",
    )
    retry_initial_wait: float = Field(
        default=0.2,
        ge=0.0,
        description="Exponential backoff multiplier in seconds",
    )
    retry_max_wait: float = Field(
        default=2.0,
        ge=0.0,
        description="Upper bound for a single backoff sleep in seconds",
    )
    step_timeout: float = Field(
        default=15.0,
        gt=0.0,
        description="Time bound for one external step in seconds",
    )
    default_profile_photo: str = Field(
        default=DEFAULT_PROFILE_PHOTO,
        min_length=1,
        description="Photo substituted when a user has none",
    )

    @model_validator(mode="after")
    def _check_backoff(self) -> AccountEngineSettings:
        if self.retry_max_wait < self.retry_initial_wait:
            raise ValueError("ACCOUNTS_RETRY_MAX_WAIT must be >= ACCOUNTS_RETRY_INITIAL_WAIT")
        return self

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.retry_attempts,
            initial_wait=self.retry_initial_wait,
            max_wait=self.retry_max_wait,
        )


@lru_cache(maxsize=1)
def get_account_settings() -> AccountEngineSettings:
    """Get cached account engine settings singleton.

    Clear with ``get_account_settings.cache_clear()`` in tests.
    """
    return AccountEngineSettings()
