"""Firestore configuration using Pydantic settings.

Environment Variables:
    FIRESTORE_PROJECT: Google Cloud project id (default: inferred from credentials)
    FIRESTORE_DATABASE: Database id (default: "(default)")
    FIRESTORE_EMULATOR_HOST: Emulator address; read by the client library itself
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FirestoreSettings(BaseSettings):
    """Configuration for the Firestore document store.

    Example:
        >>> FirestoreSettings().database
        '(default)'
    """

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    project: str | None = Field(
        default=None,
        description="Google Cloud project id; None lets the client infer it",
    )
    database: str = Field(
        default="(default)",
        min_length=1,
        description="Firestore database id",
    )


@lru_cache(maxsize=1)
def get_firestore_settings() -> FirestoreSettings:
    """Get cached Firestore settings singleton.

    Clear with ``get_firestore_settings.cache_clear()`` in tests.
    """
    return FirestoreSettings()
