"""Domain exception hierarchy for type-safe error handling.

Every failure the account engine can surface derives from
:class:`DomainError`, which carries a machine-readable ``error_code`` and
structured context for logging. Collaborator failures (document store,
identity provider, media storage) carry a ``transient`` flag so the retry
policy can tell a blip from a hard failure without inspecting types.

Example:
    >>> from concordia.foundation.domain.exceptions import NotFoundError
    >>> raise NotFoundError("UserRecord", "uid-123")
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

__all__ = [
    "DocumentNotFoundError",
    "DomainError",
    "FatalIdentityError",
    "IdentityErrorReason",
    "IdentityProviderError",
    "MediaNotFoundError",
    "MediaStorageError",
    "MissingFieldError",
    "MissingIndexError",
    "NotFoundError",
    "OperationTimeoutError",
    "PermissionDeniedError",
    "ProfileUpdateError",
    "ReauthenticationRequiredError",
    "RegistrationError",
    "StoreError",
    "TransientStoreError",
    "ValidationError",
]


class DomainError(Exception):
    """Base class for all domain errors.

    Provides error code and structured context for debugging. All domain
    exceptions inherit from this class to enable consistent error handling
    and logging.

    Attributes:
        error_code: Machine-readable error code for client handling.
        message: Human-readable error description.
        context: Structured debugging information (user ids, collections, fields).
        transient: Whether retrying the same call may succeed.

    Example:
        >>> raise DomainError("Operation failed", context={"user_id": "123"})
        DomainError: Operation failed (user_id=123)
    """

    error_code: str = "DOMAIN_ERROR"
    transient: bool = False

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Initialize domain error with message and optional context.

        Args:
            message: Human-readable error description.
            context: Structured debugging information. Keys should be snake_case.
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """String representation including context for logging."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message

    def __repr__(self) -> str:
        """Detailed representation for debugging."""
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class NotFoundError(DomainError):
    """Raised when a requested resource does not exist.

    Attributes:
        error_code: "RESOURCE_NOT_FOUND" (class constant).
        resource_type: Type of missing resource.
        resource_id: Identifier of missing resource.

    Example:
        >>> raise NotFoundError("UserRecord", "uid-123")
        NotFoundError: UserRecord not found: uid-123
    """

    error_code: str = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        **extra_context: Any,
    ) -> None:
        """Initialize not found error.

        Args:
            resource_type: Type of resource (e.g., "UserRecord", "Listing").
            resource_id: Identifier of missing resource.
            **extra_context: Additional debugging context.
        """
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} not found: {resource_id}"
        context = {
            "resource_type": resource_type,
            "resource_id": str(resource_id),
            **extra_context,
        }
        super().__init__(message, context)


class ValidationError(DomainError):
    """Raised when input fails domain validation rules.

    Attributes:
        error_code: "VALIDATION_ERROR" (class constant).
        field: Field path that failed validation.
        reason: Human-readable validation failure reason.

    Example:
        >>> raise ValidationError("activeRole", "must be one of the user's roles")
        ValidationError: Validation failed for 'activeRole': must be one of the user's roles
    """

    error_code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        field: str,
        reason: str,
        **extra_context: Any,
    ) -> None:
        """Initialize validation error.

        Args:
            field: Field path that failed validation.
            reason: Human-readable validation failure reason.
            **extra_context: Additional debugging context.
        """
        self.field = field
        self.reason = reason
        message = f"Validation failed for '{field}': {reason}"
        context = {
            "field": field,
            "reason": reason,
            **extra_context,
        }
        super().__init__(message, context)


class MissingFieldError(ValidationError):
    """Raised when a required user attribute is absent or empty.

    Example:
        >>> raise MissingFieldError("email", missing=["email", "username"])
        MissingFieldError: Validation failed for 'email': is required (missing=['email', 'username'])
    """

    error_code: str = "MISSING_FIELD"

    def __init__(self, field: str, **extra_context: Any) -> None:
        super().__init__(field, "is required", **extra_context)


class OperationTimeoutError(DomainError):
    """Raised when a supervised step exceeds its time bound."""

    error_code: str = "OPERATION_TIMEOUT"
    transient: bool = True

    def __init__(self, operation: str, seconds: float) -> None:
        self.operation = operation
        self.seconds = seconds
        super().__init__(
            f"Operation '{operation}' timed out after {seconds:g}s",
            {"operation": operation, "seconds": seconds},
        )


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------


class StoreError(DomainError):
    """Base class for document store failures.

    Attributes:
        operation: Store operation that failed (get, query, set, ...).
        collection: Collection the operation targeted.
        code: Store status code (``unavailable``, ``permission-denied``, ...).
    """

    error_code: str = "STORE_ERROR"
    code: str = "unknown"

    def __init__(
        self,
        operation: str,
        collection: str,
        detail: str | None = None,
        **extra_context: Any,
    ) -> None:
        self.operation = operation
        self.collection = collection
        message = f"Store {operation} on '{collection}' failed: {detail or self.code}"
        context = {
            "operation": operation,
            "collection": collection,
            "code": self.code,
            **extra_context,
        }
        super().__init__(message, context)


class TransientStoreError(StoreError):
    """Store temporarily unavailable or deadline exceeded. Safe to retry."""

    error_code: str = "STORE_UNAVAILABLE"
    code: str = "unavailable"
    transient: bool = True

    def __init__(
        self,
        operation: str,
        collection: str,
        detail: str | None = None,
        *,
        code: str = "unavailable",
        **extra_context: Any,
    ) -> None:
        self.code = code
        super().__init__(operation, collection, detail, **extra_context)


class PermissionDeniedError(StoreError):
    """The store refused the operation for the current credentials."""

    error_code: str = "STORE_PERMISSION_DENIED"
    code: str = "permission-denied"


class DocumentNotFoundError(StoreError):
    """An update targeted a document that does not exist."""

    error_code: str = "STORE_NOT_FOUND"
    code: str = "not-found"


class MissingIndexError(StoreError):
    """A compound query needs a composite index that is not deployed.

    The store reports this as failed-precondition. Callers that own an
    equivalent simpler query may fall back to it.
    """

    error_code: str = "STORE_MISSING_INDEX"
    code: str = "failed-precondition"


# ---------------------------------------------------------------------------
# Identity provider
# ---------------------------------------------------------------------------


class IdentityErrorReason(StrEnum):
    """Normalized identity provider failure reasons."""

    REQUIRES_REAUTH = "requires-reauth"
    NOT_FOUND = "not-found"
    DISABLED = "disabled"
    EMAIL_EXISTS = "email-exists"
    WEAK_SECRET = "weak-secret"
    INVALID_EMAIL = "invalid-email"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class IdentityProviderError(DomainError):
    """Raised by identity provider adapters.

    Attributes:
        reason: Normalized failure reason.
        transient: True only for ``UNAVAILABLE``.
    """

    error_code: str = "IDENTITY_PROVIDER_ERROR"

    def __init__(
        self,
        reason: IdentityErrorReason,
        detail: str | None = None,
        **extra_context: Any,
    ) -> None:
        self.reason = reason
        self.transient = reason is IdentityErrorReason.UNAVAILABLE
        message = f"Identity provider error: {detail or reason.value}"
        super().__init__(message, {"reason": reason.value, **extra_context})


class FatalIdentityError(DomainError):
    """The external identity could not be deleted or compensated.

    Always surfaced to the caller: the engine cannot heal it on its own.

    Attributes:
        partial_result: Work completed before the failure (for example the
            deletion report of the earlier phases), when the raiser has one.
    """

    error_code: str = "FATAL_IDENTITY_ERROR"
    partial_result: Any = None

    def __init__(self, user_id: str, reason: str, **extra_context: Any) -> None:
        self.user_id = user_id
        self.reason = reason
        super().__init__(
            f"Identity operation failed for user {user_id}: {reason}",
            {"user_id": user_id, "reason": reason, **extra_context},
        )

    @property
    def requires_reauth(self) -> bool:
        return False


class ReauthenticationRequiredError(FatalIdentityError):
    """The identity provider requires a recent sign-in before deletion."""

    error_code: str = "REAUTHENTICATION_REQUIRED"

    def __init__(self, user_id: str, **extra_context: Any) -> None:
        super().__init__(user_id, IdentityErrorReason.REQUIRES_REAUTH.value, **extra_context)

    @property
    def requires_reauth(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Media storage
# ---------------------------------------------------------------------------


class MediaStorageError(DomainError):
    """Raised when a media asset operation fails."""

    error_code: str = "MEDIA_STORAGE_ERROR"

    def __init__(self, asset_id: str, detail: str, **extra_context: Any) -> None:
        self.asset_id = asset_id
        super().__init__(
            f"Media operation failed for '{asset_id}': {detail}",
            {"asset_id": asset_id, **extra_context},
        )


class MediaNotFoundError(MediaStorageError):
    """The asset does not exist (already deleted)."""

    error_code: str = "MEDIA_NOT_FOUND"

    def __init__(self, asset_id: str, **extra_context: Any) -> None:
        super().__init__(asset_id, "not found", **extra_context)


# ---------------------------------------------------------------------------
# Account workflows
# ---------------------------------------------------------------------------


class RegistrationError(DomainError):
    """Registration failed.

    Attributes:
        field: Input field the failure is attributed to, when known.
        compensated: True when every partial write was rolled back.
    """

    error_code: str = "REGISTRATION_FAILED"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        compensated: bool = False,
        **extra_context: Any,
    ) -> None:
        self.field = field
        self.compensated = compensated
        context: dict[str, Any] = {"compensated": compensated, **extra_context}
        if field is not None:
            context["field"] = field
        super().__init__(message, context)


class ProfileUpdateError(DomainError):
    """A routed profile write failed part-way.

    Attributes:
        collection: Collection whose write failed.
        written: Collections already written before the failure.
    """

    error_code: str = "PROFILE_UPDATE_FAILED"

    def __init__(
        self,
        user_id: str,
        collection: str,
        written: list[str],
        **extra_context: Any,
    ) -> None:
        self.user_id = user_id
        self.collection = collection
        self.written = written
        super().__init__(
            f"Profile update for user {user_id} failed writing '{collection}'",
            {
                "user_id": user_id,
                "collection": collection,
                "written": written,
                **extra_context,
            },
        )
