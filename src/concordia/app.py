"""Composition root for the account engine.

Builds a fully wired :class:`AccountService` from environment settings and
composes the lifespan hooks a host process needs:

- observability (50): structlog and OpenTelemetry
- persistence (75): Firestore client
- engine (100): shared HTTP client for the identity and media adapters
- taskiq (150): broker startup for processes that enqueue tasks

Example:
    >>> lifespan = create_lifespan()
    >>> async with lifespan(None):
    ...     service = get_account_service()
    ...     await service.delete_user("uid-1")
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import httpx

from concordia.domain.accounts.service import AccountService
from concordia.domain.accounts.settings import AccountEngineSettings, get_account_settings
from concordia.foundation.application import (
    LIFESPAN_PRIORITY_ENGINE,
    ChangeNotifier,
    LifespanContribution,
    compose_lifespan,
)
from concordia.infra.auth import (
    IdentityToolkitProvider,
    IdentityToolkitSettings,
    get_identity_toolkit_settings,
)
from concordia.infra.media import (
    CloudinaryMediaStorage,
    CloudinarySettings,
    get_cloudinary_settings,
)
from concordia.infra.observability import lifespan_contribution as observability_lifespan
from concordia.infra.persistence import (
    FirestoreDocumentStore,
    RetryingDocumentStore,
    get_firestore_manager,
)
from concordia.infra.persistence import lifespan_contribution as persistence_lifespan

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable
    from contextlib import AbstractAsyncContextManager

    from concordia.foundation.domain.ports import DocumentStorePort

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
    """Shared HTTP client for the identity and media adapters.

    Closed by the engine lifespan hook.
    """
    return httpx.AsyncClient()


def build_account_service(
    *,
    store: DocumentStorePort | None = None,
    engine_settings: AccountEngineSettings | None = None,
    identity_settings: IdentityToolkitSettings | None = None,
    media_settings: CloudinarySettings | None = None,
    http_client: httpx.AsyncClient | None = None,
    notifier: ChangeNotifier | None = None,
) -> AccountService:
    """Wire the account service against the production adapters.

    Args:
        store: Document store override. Defaults to Firestore wrapped in
            :class:`RetryingDocumentStore`.
        engine_settings: Engine tuning. Defaults to the environment.
        identity_settings: Identity Toolkit credentials. Defaults to the environment.
        media_settings: Cloudinary credentials. Media deletion is disabled
            when they are incomplete.
        http_client: Shared client for the HTTP adapters.
        notifier: Change notifier shared with other components.

    Raises:
        ValueError: No identity provider API key is configured.
    """
    engine_settings = engine_settings or get_account_settings()
    identity_settings = identity_settings or get_identity_toolkit_settings()
    media_settings = media_settings or get_cloudinary_settings()
    http_client = http_client or get_http_client()

    if not identity_settings.is_configured():
        raise ValueError("IDENTITY_TOOLKIT_API_KEY must be set to build the account service")

    if store is None:
        store = RetryingDocumentStore(
            FirestoreDocumentStore(get_firestore_manager().get_client()),
            engine_settings.retry_policy(),
        )

    identity_provider = IdentityToolkitProvider(
        api_key=identity_settings.api_key,
        base_url=identity_settings.base_url,
        timeout=identity_settings.timeout,
        client=http_client,
    )

    media: CloudinaryMediaStorage | None = None
    if media_settings.is_configured():
        media = CloudinaryMediaStorage(
            cloud_name=media_settings.cloud_name,
            api_key=media_settings.api_key,
            api_secret=media_settings.api_secret,
            base_url=media_settings.base_url,
            timeout=media_settings.timeout,
            client=http_client,
        )
    else:
        logger.warning("media_storage_disabled", extra={"reason": "credentials not configured"})

    return AccountService.from_ports(
        store,
        identity_provider,
        media,
        settings=engine_settings,
        notifier=notifier,
    )


@lru_cache(maxsize=1)
def get_account_service() -> AccountService:
    """Get the process-wide AccountService built from the environment."""
    return build_account_service()


@asynccontextmanager
async def _engine_lifespan(app: Any) -> AsyncIterator[None]:
    """Release the shared HTTP client and drop cached services on shutdown.

    Args:
        app: The host application object (unused but required by protocol).
    """
    logger.info("engine_lifespan: started")
    try:
        yield
    finally:
        if get_http_client.cache_info().currsize:
            await get_http_client().aclose()
        get_http_client.cache_clear()
        get_account_service.cache_clear()
        logger.info("engine_lifespan: http client closed")


engine_lifespan = LifespanContribution(
    hook=_engine_lifespan,
    priority=LIFESPAN_PRIORITY_ENGINE,
)


def create_lifespan(
    *,
    include_taskiq: bool = False,
    extra_hooks: Iterable[LifespanContribution] = (),
) -> Callable[[Any], AbstractAsyncContextManager[None]]:
    """Compose the host lifespan.

    Args:
        include_taskiq: Start the task broker too. Processes that only run as
            a taskiq worker leave this off, the worker starts the broker itself.
        extra_hooks: Additional hooks, ordered by their priority.
    """
    hooks = [observability_lifespan, persistence_lifespan, engine_lifespan, *extra_hooks]
    if include_taskiq:
        from concordia.infra.taskiq import lifespan_contribution as taskiq_lifespan

        hooks.append(taskiq_lifespan)
    return compose_lifespan(hooks)
