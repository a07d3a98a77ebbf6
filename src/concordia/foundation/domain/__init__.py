"""Concordia Foundation Domain -- pure Python domain primitives.

This package provides the building blocks shared by the account workflows:
the exception hierarchy, user value objects and the port interfaces for
the document store, identity provider and media storage.
"""

from concordia.foundation.domain.exceptions import (
    DocumentNotFoundError,
    DomainError,
    FatalIdentityError,
    IdentityErrorReason,
    IdentityProviderError,
    MediaNotFoundError,
    MediaStorageError,
    MissingFieldError,
    MissingIndexError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    ProfileUpdateError,
    ReauthenticationRequiredError,
    RegistrationError,
    StoreError,
    TransientStoreError,
    ValidationError,
)
from concordia.foundation.domain.ports import (
    DocumentStorePort,
    IdentityProviderPort,
    MediaStoragePort,
)
from concordia.foundation.domain.user_value_objects import (
    DEFAULT_PROFILE_PHOTO,
    SELF_ASSIGNABLE_ROLES,
    Role,
    is_valid_photo,
    normalize_photo,
    reserved_roles,
)

__all__ = [
    "DEFAULT_PROFILE_PHOTO",
    "SELF_ASSIGNABLE_ROLES",
    "DocumentNotFoundError",
    "DocumentStorePort",
    "DomainError",
    "FatalIdentityError",
    "IdentityErrorReason",
    "IdentityProviderError",
    "IdentityProviderPort",
    "MediaNotFoundError",
    "MediaStorageError",
    "MediaStoragePort",
    "MissingFieldError",
    "MissingIndexError",
    "NotFoundError",
    "OperationTimeoutError",
    "PermissionDeniedError",
    "ProfileUpdateError",
    "ReauthenticationRequiredError",
    "RegistrationError",
    "Role",
    "StoreError",
    "TransientStoreError",
    "ValidationError",
    "is_valid_photo",
    "normalize_photo",
    "reserved_roles",
]
