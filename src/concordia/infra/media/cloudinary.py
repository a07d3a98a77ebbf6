"""Async HTTP adapter for deleting Cloudinary image assets.

Implements :class:`MediaStoragePort` with the signed ``image/destroy``
endpoint. Requests are signed server-side with the account's API secret:
``sha1("public_id=<id>&timestamp=<ts>" + api_secret)``.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from typing import Any, Final

import httpx

from concordia.foundation.domain.exceptions import MediaNotFoundError, MediaStorageError

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL: Final = "https://api.cloudinary.com/v1_1"
_DEFAULT_TIMEOUT: Final = 10.0


def sign_params(params: dict[str, Any], api_secret: str) -> str:
    """Cloudinary request signature over the sorted, ``&``-joined parameters."""
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode()).hexdigest()  # noqa: S324


class CloudinaryMediaStorage:
    """Media storage backed by Cloudinary.

    Supports both shared and owned httpx.AsyncClient modes, as
    :class:`~concordia.infra.auth.identity_toolkit.IdentityToolkitProvider`.

    Args:
        cloud_name: Cloudinary cloud name.
        api_key: API key.
        api_secret: API secret used to sign requests.
        base_url: API base URL.
        timeout: HTTP request timeout in seconds.
        client: Optional shared httpx.AsyncClient instance.
        clock: Source of the request timestamp (seconds since the epoch).
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        base_url: str = _DEFAULT_BASE_URL,
        timeout: float = _DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._clock = clock
        self._external_client = client is not None
        self._client: httpx.AsyncClient | None = client

    async def delete_asset(self, asset_id: str) -> None:
        """Delete one image asset.

        Raises:
            MediaNotFoundError: The asset does not exist.
            MediaStorageError: Any other failure.
        """
        params: dict[str, Any] = {"public_id": asset_id, "timestamp": int(self._clock())}
        form = {
            **params,
            "api_key": self._api_key,
            "signature": sign_params(params, self._api_secret),
        }
        client = self._get_client()
        try:
            response = await client.post(
                f"{self._base_url}/{self._cloud_name}/image/destroy",
                data=form,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning(
                "media_delete_failed",
                extra={"asset_id": asset_id, "status": status},
            )
            raise MediaStorageError(asset_id, f"HTTP {status}", status=status) from exc
        except httpx.TransportError as exc:
            raise MediaStorageError(asset_id, f"unreachable: {type(exc).__name__}") from exc

        result = response.json().get("result")
        if result == "not found":
            raise MediaNotFoundError(asset_id)
        if result != "ok":
            raise MediaStorageError(asset_id, f"unexpected result {result!r}")
        logger.info("media_asset_deleted", extra={"asset_id": asset_id})

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        """Close the internal httpx.AsyncClient if we own it."""
        if self._client is not None and not self._external_client:
            await self._client.aclose()
            self._client = None
