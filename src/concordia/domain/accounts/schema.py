"""Canonical user schema: normalization, drift analysis and profile seeds.

Every write path funnels raw user attributes through :class:`SchemaValidator`
so that a UserRecord has exactly one canonical shape, whichever client
produced it. The same rules drive the drift scanner: a stored record is
clean exactly when re-normalizing it changes nothing.

Canonical rules:
    - ``email`` and ``username`` are lower-cased and trimmed.
    - ``displayName`` falls back to ``fullName`` and then ``username``.
    - ``roles`` is a non-empty list of known roles, ``[client]`` by default.
    - ``activeRole`` is a member of ``roles``.
    - ``isFreelancer`` is derived from ``roles``; an explicit flag is ignored.
    - Legacy ``birthDate`` and ``city`` map to ``dateOfBirth`` and ``location``.
    - ``profilePhoto`` is never empty; invalid values become the default photo.

All functions here are pure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from concordia.foundation.domain.exceptions import MissingFieldError
from concordia.foundation.domain.ports import DELETE_FIELD, SERVER_TIMESTAMP
from concordia.foundation.domain.user_value_objects import (
    DEFAULT_PROFILE_PHOTO,
    Role,
    is_embedded_photo,
    is_valid_photo,
    normalize_photo,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

# Legacy field -> canonical field.
LEGACY_FIELDS: Final = {
    "birthDate": "dateOfBirth",
    "city": "location",
    "fullName": "displayName",
}

_REQUIRED_FIELDS: Final = ("uid", "email", "username", "displayName")

# Fields with a dedicated issue tag; everything else canonical is compared
# generically and reported as ``normalize_<field>``.
_TAGGED_FIELDS: Final = frozenset(
    {"uid", "roles", "activeRole", "isFreelancer", "profilePhoto", "isActive", "isOnline"}
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value.strip() if isinstance(value, str) else str(value).strip()


def _optional(value: Any) -> Any:
    """Strip strings, keep structured values (timestamps, geo objects) as-is."""
    if isinstance(value, str):
        return value.strip() or None
    return value


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _rate(value: Any) -> float:
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return 0.0
    return rate if rate > 0 else 0.0


def _equivalent(stored: Any, canonical: Any) -> bool:
    """A missing stored value is equivalent to an empty canonical default.

    Booleans compare by identity so that ``1`` or ``"true"`` count as drift.
    """
    if isinstance(canonical, bool):
        return stored is canonical
    if stored is None:
        return canonical is None or canonical == ""
    return bool(stored == canonical)


def derive_roles(value: Any) -> tuple[Role, ...]:
    """Parse a stored roles value, defaulting to ``(client,)``.

    Unknown entries are dropped and duplicates collapsed, keeping order.
    """
    if not isinstance(value, (list, tuple)):
        return (Role.CLIENT,)
    roles: list[Role] = []
    for item in value:
        role = Role.parse(item)
        if role is not None and role not in roles:
            roles.append(role)
    return tuple(roles) or (Role.CLIENT,)


def roles_are_malformed(value: Any) -> bool:
    if not isinstance(value, list):
        return True
    return not any(Role.parse(item) is not None for item in value)


@dataclass(frozen=True, slots=True)
class CanonicalUser:
    """A normalized UserRecord.

    Attributes:
        uid: Identity id; also the document key.
        email: Lower-cased, trimmed email.
        username: Lower-cased, trimmed username.
        display_name: Non-empty display name.
        roles: Non-empty ordered role tuple.
        active_role: Member of ``roles``.
        profile_photo: Non-empty photo reference.
    """

    uid: str
    email: str
    username: str
    display_name: str
    roles: tuple[Role, ...]
    active_role: Role
    profile_photo: str
    phone_number: str = ""
    date_of_birth: Any = None
    gender: str = ""
    location: Any = ""
    is_active: bool = True
    email_verified: bool = False
    is_online: bool = False

    @property
    def is_freelancer(self) -> bool:
        return Role.FREELANCER in self.roles

    def to_document(self) -> dict[str, Any]:
        """Store representation (camelCase, timestamps excluded)."""
        return {
            "uid": self.uid,
            "email": self.email,
            "username": self.username,
            "displayName": self.display_name,
            "roles": [role.value for role in self.roles],
            "activeRole": self.active_role.value,
            "isFreelancer": self.is_freelancer,
            "profilePhoto": self.profile_photo,
            "phoneNumber": self.phone_number,
            "dateOfBirth": self.date_of_birth,
            "gender": self.gender,
            "location": self.location,
            "isActive": self.is_active,
            "emailVerified": self.email_verified,
            "isOnline": self.is_online,
        }


class SchemaValidator:
    """Normalizes raw user attributes and classifies stored drift.

    Args:
        default_photo: Sentinel substituted for invalid profile photos.

    Example:
        >>> validator = SchemaValidator()
        >>> user = validator.normalize({"email": " A@B.io ", "username": "Ann"}, "uid-1")
        >>> user.email, user.display_name, user.roles
        ('a@b.io', 'Ann', (<Role.CLIENT: 'client'>,))
    """

    def __init__(self, default_photo: str = DEFAULT_PROFILE_PHOTO) -> None:
        self.default_photo = default_photo

    def normalize_photo(self, value: Any) -> str:
        return normalize_photo(value, self.default_photo)

    def normalize(self, raw: Mapping[str, Any], identity_id: str) -> CanonicalUser:
        """Produce the canonical UserRecord for ``raw``.

        Args:
            raw: Raw attributes from any client or a stored document.
            identity_id: Identity id the record is keyed by.

        Returns:
            The canonical user.

        Raises:
            MissingFieldError: If uid, email, username or displayName is
                empty after normalization. ``context["missing"]`` lists all
                missing fields.
        """
        uid = _text(identity_id)
        email = _text(raw.get("email")).lower()
        username = _text(raw.get("username")).lower()
        display_name = (
            _text(raw.get("displayName"))
            or _text(raw.get("fullName"))
            or _text(raw.get("username"))
        )
        values = {"uid": uid, "email": email, "username": username, "displayName": display_name}
        missing = [name for name in _REQUIRED_FIELDS if not values[name]]
        if missing:
            raise MissingFieldError(missing[0], missing=missing)

        roles = derive_roles(raw.get("roles"))
        candidate = Role.parse(raw.get("activeRole")) or Role.parse(raw.get("role"))
        active_role = candidate if candidate in roles else roles[0]

        is_active = raw.get("isActive")
        return CanonicalUser(
            uid=uid,
            email=email,
            username=username,
            display_name=display_name,
            roles=roles,
            active_role=active_role,
            profile_photo=normalize_photo(raw.get("profilePhoto"), self.default_photo),
            phone_number=_text(raw.get("phoneNumber")),
            date_of_birth=_optional(_first_present(raw, "dateOfBirth", "birthDate")),
            gender=_text(raw.get("gender")),
            location=_optional(_first_present(raw, "location", "city")) or "",
            is_active=True if is_active is None else bool(is_active),
            email_verified=bool(raw.get("emailVerified", False)),
            is_online=bool(raw.get("isOnline", False)),
        )

    def recover_legacy(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        """Rebuild a usable roles list for records written before roles existed.

        Only applies when ``roles`` is malformed. The legacy single ``role``
        and ``isFreelancer`` flag are the only surviving evidence of the
        user's roles, so they are folded into ``roles`` before the usual
        derivation discards them.
        """
        recovered = dict(raw)
        if not roles_are_malformed(raw.get("roles")):
            return recovered
        roles = [Role.CLIENT]
        legacy_role = Role.parse(raw.get("role"))
        if legacy_role is not None and legacy_role not in roles:
            roles.append(legacy_role)
        if raw.get("isFreelancer") is True and Role.FREELANCER not in roles:
            roles.append(Role.FREELANCER)
        recovered["roles"] = [role.value for role in roles]
        return recovered

    def analyze(self, raw: Mapping[str, Any], doc_id: str) -> list[str]:
        """Classify how a stored UserRecord deviates from the canonical shape.

        Never raises. A canonical record yields an empty list.

        Args:
            raw: Stored document data.
            doc_id: Document id (the identity id).

        Returns:
            Issue tags in a stable order.
        """
        issues: list[str] = []

        stored_uid = _text(raw.get("uid"))
        if not stored_uid:
            issues.append("migrate_id_to_uid" if raw.get("id") else "add_missing_uid")
        elif raw.get("uid") != doc_id:
            issues.append("fix_uid_mismatch")

        for legacy, tag in (
            ("birthDate", "migrate_birth_date"),
            ("city", "migrate_city_to_location"),
            ("fullName", "migrate_full_name_to_display_name"),
        ):
            if legacy in raw:
                issues.append(tag)

        if "isActive" not in raw:
            issues.append("add_is_active")
        if "isOnline" not in raw:
            issues.append("add_is_online")

        photo = raw.get("profilePhoto")
        if is_embedded_photo(photo):
            issues.append("convert_base64_photo")
        elif not is_valid_photo(photo):
            issues.append("fix_missing_photo")

        try:
            canonical = self.normalize(self.recover_legacy(raw), doc_id).to_document()
        except MissingFieldError as exc:
            issues.extend(f"missing_{name}" for name in exc.context.get("missing", []))
            return issues

        if raw.get("roles") != canonical["roles"]:
            issues.append("fix_roles_array")
        if "activeRole" not in raw:
            issues.append("add_active_role")
        elif not _equivalent(raw["activeRole"], canonical["activeRole"]):
            issues.append("fix_active_role")
        if "isFreelancer" not in raw:
            issues.append("add_is_freelancer_flag")
        elif not _equivalent(raw["isFreelancer"], canonical["isFreelancer"]):
            issues.append("fix_is_freelancer_flag")
        for name in ("isActive", "isOnline"):
            if name in raw and not _equivalent(raw[name], canonical[name]):
                issues.append(f"normalize_{name}")
        if (
            is_valid_photo(photo)
            and not is_embedded_photo(photo)
            and photo != canonical["profilePhoto"]
        ):
            issues.append("normalize_profilePhoto")

        migrated = {LEGACY_FIELDS[legacy] for legacy in LEGACY_FIELDS if legacy in raw}
        for name, value in canonical.items():
            if name in _TAGGED_FIELDS or name in migrated:
                continue
            if not _equivalent(raw.get(name), value):
                issues.append(f"normalize_{name}")
        return issues

    def apply_fixes(self, raw: Mapping[str, Any], doc_id: str) -> dict[str, Any]:
        """Compute the single update that makes a stored record canonical.

        Returns:
            Field updates, including ``DELETE_FIELD`` for legacy keys. Empty
            when the record is already canonical.

        Raises:
            MissingFieldError: When a required field cannot be derived.
        """
        canonical = self.normalize(self.recover_legacy(raw), doc_id).to_document()
        fixes: dict[str, Any] = {}
        for name, value in canonical.items():
            if name in _TAGGED_FIELDS:
                if name not in raw or not _equivalent(raw[name], value):
                    fixes[name] = value
            elif not _equivalent(raw.get(name), value):
                fixes[name] = value
        for legacy in LEGACY_FIELDS:
            if legacy in raw:
                fixes[legacy] = DELETE_FIELD
        if not _text(raw.get("uid")) and "id" in raw:
            fixes["id"] = DELETE_FIELD
        if fixes:
            fixes["updatedAt"] = SERVER_TIMESTAMP
        return fixes

    def client_profile_data(self, user_id: str, raw: Mapping[str, Any]) -> dict[str, Any]:
        """Initial ClientProfile document for a new user."""
        marketing = raw.get("marketingEmails")
        if marketing is None:
            marketing = raw.get("agreeToMarketing", False)
        return {
            "userId": user_id,
            "phoneNumber": _text(raw.get("phoneNumber")),
            "dateOfBirth": _optional(_first_present(raw, "dateOfBirth", "birthDate")),
            "gender": _text(raw.get("gender")),
            "location": _optional(_first_present(raw, "location", "city")) or "",
            "bio": _text(raw.get("bio")),
            "companyName": _text(raw.get("companyName")),
            "industry": _text(raw.get("industry")),
            "marketingEmails": bool(marketing),
        }

    def freelancer_profile_data(self, user_id: str, raw: Mapping[str, Any]) -> dict[str, Any]:
        """Initial FreelancerProfile document with zeroed aggregates."""
        return {
            "userId": user_id,
            "skills": _string_list(raw.get("skills")),
            "experienceLevel": _text(raw.get("experienceLevel")),
            "bio": _text(raw.get("bio")),
            "portfolioLinks": _string_list(raw.get("portfolioLinks")),
            "hourlyRate": _rate(raw.get("hourlyRate")),
            "availability": _text(raw.get("availability")),
            "rating": 0,
            "totalReviews": 0,
            "totalOrders": 0,
        }
