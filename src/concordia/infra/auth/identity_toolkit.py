"""Async HTTP adapter for the Identity Toolkit REST API.

Implements :class:`IdentityProviderPort` against the ``accounts:*``
endpoints used by email/password sign-up:

- ``accounts:signUp`` creates the identity and returns a session token
- ``accounts:update`` sets the display name
- ``accounts:sendOobCode`` sends the verification email
- ``accounts:delete`` deletes the identity (needs a recent session token)

Provider error codes are normalized onto :class:`IdentityErrorReason`.
Transport failures and 5xx responses map to ``unavailable``, the only
reason the retry policy treats as transient.
"""

from __future__ import annotations

import logging
from typing import Any, Final

import httpx

from concordia.foundation.domain.exceptions import IdentityErrorReason, IdentityProviderError
from concordia.foundation.domain.ports import Identity

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL: Final = "https://identitytoolkit.googleapis.com/v1"
_DEFAULT_TIMEOUT: Final = 10.0

# Provider error code -> normalized reason.
ERROR_REASONS: Final[dict[str, IdentityErrorReason]] = {
    "EMAIL_EXISTS": IdentityErrorReason.EMAIL_EXISTS,
    "WEAK_PASSWORD": IdentityErrorReason.WEAK_SECRET,
    "INVALID_EMAIL": IdentityErrorReason.INVALID_EMAIL,
    "MISSING_EMAIL": IdentityErrorReason.INVALID_EMAIL,
    "USER_NOT_FOUND": IdentityErrorReason.NOT_FOUND,
    "EMAIL_NOT_FOUND": IdentityErrorReason.NOT_FOUND,
    "USER_DISABLED": IdentityErrorReason.DISABLED,
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": IdentityErrorReason.REQUIRES_REAUTH,
    "TOKEN_EXPIRED": IdentityErrorReason.REQUIRES_REAUTH,
    "INVALID_ID_TOKEN": IdentityErrorReason.REQUIRES_REAUTH,
    "TOO_MANY_ATTEMPTS_TRY_LATER": IdentityErrorReason.UNAVAILABLE,
}


def parse_error_code(message: str) -> str:
    """Extract the error code from a provider message.

    Messages look like ``"WEAK_PASSWORD : Password should be at least 6 characters"``.
    """
    return message.split(":", 1)[0].strip()


def reason_for(status_code: int, code: str) -> IdentityErrorReason:
    if code in ERROR_REASONS:
        return ERROR_REASONS[code]
    if status_code >= 500:
        return IdentityErrorReason.UNAVAILABLE
    return IdentityErrorReason.UNKNOWN


class IdentityToolkitProvider:
    """Identity provider backed by the Identity Toolkit REST API.

    Supports both shared and owned httpx.AsyncClient modes:
    - If ``client`` is provided, it is reused across calls (caller manages lifecycle).
    - If ``client`` is omitted, an internal client is created lazily on first use.
      Call :meth:`aclose` to release it.

    Args:
        api_key: Web API key of the project.
        base_url: API base URL (override for the auth emulator).
        timeout: HTTP request timeout in seconds.
        client: Optional shared httpx.AsyncClient instance.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = _DEFAULT_BASE_URL,
        timeout: float = _DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._external_client = client is not None
        self._client: httpx.AsyncClient | None = client

    async def create_identity(self, email: str, secret: str) -> Identity:
        """Create an email/password identity.

        Raises:
            IdentityProviderError: ``email-exists``, ``weak-secret``,
                ``invalid-email``, ``unavailable`` or ``unknown``.
        """
        body = await self._call(
            "accounts:signUp",
            {"email": email, "password": secret, "returnSecureToken": True},
        )
        identity = Identity(
            uid=str(body["localId"]),
            email=str(body.get("email", email)),
            email_verified=bool(body.get("emailVerified", False)),
            id_token=str(body["idToken"]) if body.get("idToken") else None,
        )
        logger.info("identity_created", extra={"user_id": identity.uid})
        return identity

    async def delete_identity(self, identity: Identity) -> None:
        """Delete the identity.

        Raises:
            IdentityProviderError: ``requires-reauth`` when no usable session
                token is held, ``not-found`` when already deleted.
        """
        await self._call("accounts:delete", {"idToken": self._session(identity)})
        logger.info("identity_deleted", extra={"user_id": identity.uid})

    async def set_display_name(self, identity: Identity, display_name: str) -> None:
        await self._call(
            "accounts:update",
            {
                "idToken": self._session(identity),
                "displayName": display_name,
                "returnSecureToken": False,
            },
        )

    async def send_verification_notice(self, identity: Identity) -> None:
        await self._call(
            "accounts:sendOobCode",
            {"requestType": "VERIFY_EMAIL", "idToken": self._session(identity)},
        )
        logger.info("verification_notice_sent", extra={"user_id": identity.uid})

    def _session(self, identity: Identity) -> str:
        if not identity.id_token:
            raise IdentityProviderError(
                IdentityErrorReason.REQUIRES_REAUTH,
                "no session token for identity",
                user_id=identity.uid,
            )
        return identity.id_token

    def _get_client(self) -> httpx.AsyncClient:
        """Return the shared or lazily-created httpx.AsyncClient."""
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        """Close the internal httpx.AsyncClient if we own it.

        No-op if the client was provided externally or not yet created.
        """
        if self._client is not None and not self._external_client:
            await self._client.aclose()
            self._client = None

    async def _call(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST to an ``accounts:*`` endpoint and return the JSON body.

        Raises:
            IdentityProviderError: On transport failure or non-2xx response.
        """
        client = self._get_client()
        try:
            response = await client.post(
                f"{self._base_url}/{endpoint}",
                params={"key": self._api_key},
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            code = self._error_code(exc.response)
            reason = reason_for(status, code)
            logger.warning(
                "identity_toolkit_error",
                extra={"endpoint": endpoint, "status": status, "code": code},
            )
            raise IdentityProviderError(reason, code or f"HTTP {status}", status=status) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "identity_toolkit_unreachable",
                extra={"endpoint": endpoint, "error": type(exc).__name__},
            )
            raise IdentityProviderError(IdentityErrorReason.UNAVAILABLE, str(exc)) from exc

        body: dict[str, Any] = response.json() if response.content else {}
        return body

    @staticmethod
    def _error_code(response: httpx.Response) -> str:
        if not response.headers.get("content-type", "").startswith("application/json"):
            return ""
        error = response.json().get("error")
        if not isinstance(error, dict):
            return ""
        return parse_error_code(str(error.get("message", "")))
