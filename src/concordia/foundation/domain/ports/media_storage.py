"""Port interface for media asset storage."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class MediaStoragePort(Protocol):
    """Port for deleting stored media assets by id.

    Raises ``MediaNotFoundError`` when the asset is already gone and
    ``MediaStorageError`` for any other failure.
    """

    async def delete_asset(self, asset_id: str) -> None:
        """Delete one asset."""
        ...
