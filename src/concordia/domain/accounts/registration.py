"""Registration saga across the identity provider and the profile collections.

Orchestrates the registration flow:
1. Pre-flight: normalize with a placeholder id so bad input never reaches the provider
2. Create the identity
3. Normalize with the real identity id
4. Write UserRecord -> ClientProfile -> FreelancerProfile (freelancers only)
5. Set the provider display name
6. Send the verification notice (best-effort, never rolled back)

Compensating action: any failure in steps 3-5 deletes the documents written
so far (newest first) and then the identity. A registration either fully
exists or leaves nothing behind but, at worst, orphan documents that the
orphan sweep removes.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING, Any, Final, NoReturn

from concordia.domain.accounts.collections import CLIENT_PROFILES, FREELANCER_PROFILES, USERS
from concordia.domain.accounts.schema import CanonicalUser, SchemaValidator
from concordia.foundation.application.concurrency import step_timeout
from concordia.foundation.application.notifier import ChangeNotifier, ChangeTopic
from concordia.foundation.application.retry import RetryPolicy
from concordia.foundation.domain.exceptions import (
    DomainError,
    FatalIdentityError,
    IdentityErrorReason,
    IdentityProviderError,
    OperationTimeoutError,
    RegistrationError,
    ValidationError,
)
from concordia.foundation.domain.ports import SERVER_TIMESTAMP
from concordia.foundation.domain.user_value_objects import Role, reserved_roles

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from concordia.foundation.domain.ports import (
        DocumentStorePort,
        Identity,
        IdentityProviderPort,
    )

logger = logging.getLogger(__name__)

_PENDING_UID: Final = "pending-identity"

# Provider failure -> (input field, user-facing message).
IDENTITY_ERROR_MESSAGES: Final[dict[IdentityErrorReason, tuple[str | None, str]]] = {
    IdentityErrorReason.EMAIL_EXISTS: (
        "email",
        "This email is already registered. Sign in or use a different email.",
    ),
    IdentityErrorReason.WEAK_SECRET: (
        "password",
        "The password is too weak. Use at least 6 characters.",
    ),
    IdentityErrorReason.INVALID_EMAIL: (
        "email",
        "Enter a valid email address.",
    ),
    IdentityErrorReason.UNAVAILABLE: (
        None,
        "The sign-up service could not be reached. Check your connection and try again.",
    ),
}
_GENERIC_FAILURE: Final = "Registration could not be completed. Please try again."


def legacy_payload(
    email: str,
    secret: str,
    role: str,
    attributes: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a registration payload from the single-role sign-up form.

    The legacy form collected one role; every user is also a client.
    """
    chosen = Role.parse(role) or Role.CLIENT
    roles = [Role.CLIENT.value] if chosen is Role.CLIENT else [Role.CLIENT.value, chosen.value]
    return {
        **(attributes or {}),
        "email": email,
        "password": secret,
        "roles": roles,
        "activeRole": chosen.value,
    }


class RegistrationOrchestrator:
    """Creates an identity and its profile documents, or none of them.

    Args:
        store: Document store.
        identity_provider: Identity provider.
        schema: Schema validator.
        retry: Retry policy for idempotent provider calls (display name,
            compensating delete). Identity creation is never retried: a
            lost response would turn the retry into a duplicate-email error.
        step_timeout_seconds: Per-step time bound; None disables it.
        notifier: Optional change notifier for ``USER_REGISTERED``.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        identity_provider: IdentityProviderPort,
        schema: SchemaValidator | None = None,
        *,
        retry: RetryPolicy | None = None,
        step_timeout_seconds: float | None = 15.0,
        notifier: ChangeNotifier | None = None,
    ) -> None:
        self._store = store
        self._identity = identity_provider
        self._schema = schema or SchemaValidator()
        self._retry = retry or RetryPolicy()
        self._step_timeout = step_timeout_seconds
        self._notifier = notifier

    async def register(self, raw: Mapping[str, Any]) -> CanonicalUser:
        """Register a user from raw sign-up attributes.

        Args:
            raw: Sign-up attributes. ``password`` holds the secret handed to
                the identity provider; it is never persisted.

        Returns:
            The canonical UserRecord that was written.

        Raises:
            RegistrationError: Registration failed. ``field`` names the
                offending input when known; ``compensated`` is True when every
                partial write was rolled back.
            FatalIdentityError: Rollback could not delete the new identity.
        """
        secret = raw.get("password")
        if not isinstance(secret, str) or not secret:
            raise RegistrationError("A password is required.", field="password")
        roles_value = raw.get("roles")
        requested = list(roles_value) if isinstance(roles_value, (list, tuple)) else []
        if reserved_roles([*requested, raw.get("activeRole"), raw.get("role")]):
            raise RegistrationError("The admin role cannot be self-assigned.", field="roles")
        try:
            self._schema.normalize(raw, _PENDING_UID)
        except ValidationError as exc:
            raise RegistrationError(f"{exc.field} is required.", field=exc.field) from exc

        email = str(raw.get("email", "")).strip().lower()
        identity = await self._create_identity(email, secret)
        logger.debug("registration_identity_created", extra={"user_id": identity.uid})

        written: list[str] = []
        step = "normalize"
        try:
            user = dataclasses.replace(
                self._schema.normalize(raw, identity.uid),
                email_verified=identity.email_verified,
            )
            stamps = {"createdAt": SERVER_TIMESTAMP, "updatedAt": SERVER_TIMESTAMP}

            step = "write_user_record"
            await self._step(
                step,
                self._store.set,
                USERS,
                user.uid,
                {**user.to_document(), **stamps},
            )
            written.append(USERS)

            step = "write_client_profile"
            await self._step(
                step,
                self._store.set,
                CLIENT_PROFILES,
                user.uid,
                {**self._schema.client_profile_data(user.uid, raw), **stamps},
            )
            written.append(CLIENT_PROFILES)

            if user.is_freelancer:
                step = "write_freelancer_profile"
                await self._step(
                    step,
                    self._store.set,
                    FREELANCER_PROFILES,
                    user.uid,
                    {**self._schema.freelancer_profile_data(user.uid, raw), **stamps},
                )
                written.append(FREELANCER_PROFILES)

            step = "set_display_name"
            await self._step(
                step,
                self._identity.set_display_name,
                identity,
                user.display_name,
                retry=True,
            )
        except Exception as exc:
            await self._compensate(identity, written, step, exc)

        await self._send_verification(identity)

        logger.info(
            "user_registered",
            extra={
                "user_id": user.uid,
                "roles": [role.value for role in user.roles],
                "collections": written,
            },
        )
        if self._notifier is not None:
            await self._notifier.publish(ChangeTopic.USER_REGISTERED, user_id=user.uid)
        return user

    async def register_legacy(
        self,
        email: str,
        secret: str,
        role: str,
        attributes: Mapping[str, Any] | None = None,
    ) -> CanonicalUser:
        """Register from the single-role sign-up form. See :func:`legacy_payload`."""
        return await self.register(legacy_payload(email, secret, role, attributes))

    async def _create_identity(self, email: str, secret: str) -> Identity:
        try:
            return await self._step(
                "create_identity", self._identity.create_identity, email, secret
            )
        except IdentityProviderError as exc:
            field, message = IDENTITY_ERROR_MESSAGES.get(exc.reason, (None, _GENERIC_FAILURE))
            logger.info(
                "registration_identity_rejected",
                extra={"reason": exc.reason.value, "field": field},
            )
            raise RegistrationError(message, field=field, reason=exc.reason.value) from exc
        except OperationTimeoutError as exc:
            # The provider may still complete the request; the identity would
            # then exist without profile documents until the user retries.
            logger.error("registration_identity_timeout", extra={"seconds": exc.seconds})
            raise RegistrationError(_GENERIC_FAILURE, reason="timeout") from exc

    async def _step(
        self,
        operation: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        retry: bool = False,
    ) -> Any:
        async with step_timeout(operation, self._step_timeout):
            if retry:
                return await self._retry.call(fn, *args)
            return await fn(*args)

    async def _compensate(
        self,
        identity: Identity,
        written: list[str],
        step: str,
        cause: Exception,
    ) -> NoReturn:
        """Roll back a partial registration and raise the surfaced error."""
        logger.warning(
            "registration_failed_compensating",
            extra={
                "user_id": identity.uid,
                "step": step,
                "written": list(written),
                "error": str(cause),
            },
        )
        leftover: list[str] = []
        for collection in reversed(written):
            try:
                await self._step(
                    f"compensate_{collection}", self._store.delete, collection, identity.uid
                )
            except DomainError:
                logger.exception(
                    "registration_compensation_delete_failed",
                    extra={"user_id": identity.uid, "collection": collection},
                )
                leftover.append(collection)

        try:
            await self._step(
                "compensate_identity",
                self._identity.delete_identity,
                identity,
                retry=True,
            )
        except IdentityProviderError as exc:
            if exc.reason is not IdentityErrorReason.NOT_FOUND:
                logger.exception(
                    "registration_compensation_identity_failed",
                    extra={"user_id": identity.uid, "reason": exc.reason.value},
                )
                raise FatalIdentityError(
                    identity.uid, exc.reason.value, during="registration_rollback"
                ) from cause
        except OperationTimeoutError as exc:
            logger.exception(
                "registration_compensation_identity_failed",
                extra={"user_id": identity.uid, "reason": "timeout"},
            )
            raise FatalIdentityError(
                identity.uid, "timeout", during="registration_rollback"
            ) from exc

        logger.info(
            "registration_compensated",
            extra={"user_id": identity.uid, "leftover": leftover},
        )
        if isinstance(cause, ValidationError):
            raise RegistrationError(
                f"{cause.field} is required.", field=cause.field, compensated=not leftover
            ) from cause
        raise RegistrationError(
            _GENERIC_FAILURE, compensated=not leftover, step=step
        ) from cause

    async def _send_verification(self, identity: Identity) -> None:
        try:
            await self._step(
                "send_verification", self._identity.send_verification_notice, identity
            )
        except DomainError as exc:
            logger.warning(
                "registration_verification_failed",
                extra={"user_id": identity.uid, "error": str(exc)},
            )

