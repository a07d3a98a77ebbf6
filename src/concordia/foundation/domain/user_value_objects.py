"""Value objects for marketplace users.

Roles and the profile photo rules are shared by the schema validator, the
profile router and the drift scanner, so they live here rather than in any
one of them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from collections.abc import Iterable

DEFAULT_PROFILE_PHOTO: Final = "/images/default-profile.jpg"

# Placeholder strings that legacy clients wrote instead of leaving the field out.
_PLACEHOLDER_PHOTOS: Final = frozenset({"null", "undefined"})
_EMBEDDED_PHOTO_PREFIX: Final = "data:image/"


class Role(StrEnum):
    """Marketplace role a user may hold."""

    CLIENT = "client"
    FREELANCER = "freelancer"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> Role | None:
        """Return the matching role, or None for unknown values."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


SELF_ASSIGNABLE_ROLES: Final = frozenset({Role.CLIENT, Role.FREELANCER})
"""Roles a user may grant themselves; ``admin`` is granted out of band."""


def reserved_roles(values: Iterable[Any]) -> list[Role]:
    """Known roles in ``values`` that a user may not grant themselves."""
    reserved: list[Role] = []
    for value in values:
        role = value if isinstance(value, Role) else Role.parse(value)
        if role is not None and role not in SELF_ASSIGNABLE_ROLES and role not in reserved:
            reserved.append(role)
    return reserved


def is_valid_photo(value: Any) -> bool:
    """Check whether a stored profile photo value is usable.

    Absent, empty, whitespace-only and the literal strings ``"null"`` and
    ``"undefined"`` are invalid.

    Example:
        >>> is_valid_photo("https://cdn.example.com/p.jpg")
        True
        >>> is_valid_photo("undefined")
        False
    """
    if not isinstance(value, str):
        return False
    stripped = value.strip()
    return bool(stripped) and stripped not in _PLACEHOLDER_PHOTOS


def is_embedded_photo(value: Any) -> bool:
    """True for base64 ``data:image/...`` payloads stored inline."""
    return isinstance(value, str) and value.startswith(_EMBEDDED_PHOTO_PREFIX)


def normalize_photo(value: Any, default: str = DEFAULT_PROFILE_PHOTO) -> str:
    """Return a usable photo reference, substituting the sentinel default.

    Inline base64 payloads are replaced too: they are not asset references
    and bloat every read of the record.
    """
    if not is_valid_photo(value) or is_embedded_photo(value):
        return default
    return str(value).strip()
