"""Port interface for the external identity provider.

The identity provider owns credentials. The engine only creates, renames,
verifies and deletes identities; it never sees a stored secret.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class Identity:
    """An identity issued by the provider.

    Attributes:
        uid: Provider-assigned identifier. Becomes the UserRecord key.
        email: Email the identity was created with.
        email_verified: Whether the provider has verified the email.
        id_token: Short-lived session token. Some providers need it to act
            on the identity (rename, delete); None when no session is held.
    """

    uid: str
    email: str = ""
    email_verified: bool = False
    id_token: str | None = field(default=None, repr=False)


@runtime_checkable
class IdentityProviderPort(Protocol):
    """Port for identity lifecycle operations.

    All methods raise :class:`~concordia.foundation.domain.exceptions.IdentityProviderError`
    with a normalized reason on failure.
    """

    async def create_identity(self, email: str, secret: str) -> Identity:
        """Create an identity for the given credentials."""
        ...

    async def delete_identity(self, identity: Identity) -> None:
        """Delete the identity. Reason ``requires-reauth`` when the session is stale."""
        ...

    async def set_display_name(self, identity: Identity, display_name: str) -> None:
        """Set the provider-side display name."""
        ...

    async def send_verification_notice(self, identity: Identity) -> None:
        """Send the email verification message."""
        ...
