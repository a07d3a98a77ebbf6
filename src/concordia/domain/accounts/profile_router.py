"""Field-routed profile updates and the read-side profile merge.

A user's profile is spread over three documents. Writes are split by field
ownership so each document only ever receives the fields it owns; reads
merge the three documents back with a fixed precedence.

Ownership is declared once, on the :class:`ProfilePatch` schema, as
``Annotated`` metadata. :data:`FIELD_OWNERSHIP` is derived from the schema
at import time, so a field cannot be accepted without an owner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Annotated, Any, Final

import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from concordia.domain.accounts.collections import (
    CLIENT_PROFILES,
    FREELANCER_PROFILES,
    USERS,
)
from concordia.domain.accounts.schema import SchemaValidator, derive_roles
from concordia.foundation.application.concurrency import gather_bounded
from concordia.foundation.application.notifier import ChangeNotifier, ChangeTopic
from concordia.foundation.domain.exceptions import (
    DomainError,
    NotFoundError,
    ProfileUpdateError,
    ValidationError,
)
from concordia.foundation.domain.ports import SERVER_TIMESTAMP
from concordia.foundation.domain.user_value_objects import (
    SELF_ASSIGNABLE_ROLES,
    Role,
    reserved_roles,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from concordia.foundation.domain.ports import Document, DocumentStorePort

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OwnedBy:
    """Annotated marker naming the collections that own a patch field."""

    collections: tuple[str, ...]


_USER = OwnedBy((USERS,))
_CLIENT = OwnedBy((CLIENT_PROFILES,))
_FREELANCER = OwnedBy((FREELANCER_PROFILES,))
_USER_AND_CLIENT = OwnedBy((USERS, CLIENT_PROFILES))
_CLIENT_AND_FREELANCER = OwnedBy((CLIENT_PROFILES, FREELANCER_PROFILES))

# Write order. The UserRecord goes first: it is the record other readers key on.
WRITE_ORDER: Final = (USERS, CLIENT_PROFILES, FREELANCER_PROFILES)

_BOOKKEEPING_FIELDS: Final = frozenset({"userId", "createdAt", "updatedAt"})


class ProfilePatch(BaseModel):
    """Accepted profile fields, tagged with their owning collections.

    Unknown keys are ignored. ``isFreelancer`` is deliberately absent: it is
    derived from ``roles``.
    """

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    display_name: Annotated[str | None, _USER] = None
    email: Annotated[str | None, _USER] = None
    username: Annotated[str | None, _USER] = None
    phone_number: Annotated[str | None, _USER] = None
    profile_photo: Annotated[Any, _USER] = None
    roles: Annotated[list[str] | None, _USER] = None
    active_role: Annotated[str | None, _USER] = None
    is_active: Annotated[bool | None, _USER] = None
    is_online: Annotated[bool | None, _USER] = None

    gender: Annotated[str | None, _USER_AND_CLIENT] = None
    date_of_birth: Annotated[Any, _USER_AND_CLIENT] = None
    location: Annotated[Any, _USER_AND_CLIENT] = None

    company_name: Annotated[str | None, _CLIENT] = None
    industry: Annotated[str | None, _CLIENT] = None
    marketing_emails: Annotated[bool | None, _CLIENT] = None

    bio: Annotated[str | None, _CLIENT_AND_FREELANCER] = None

    skills: Annotated[list[str] | None, _FREELANCER] = None
    education: Annotated[Any, _FREELANCER] = None
    certifications: Annotated[Any, _FREELANCER] = None
    experience_level: Annotated[str | None, _FREELANCER] = None
    hourly_rate: Annotated[float | None, _FREELANCER] = None
    availability: Annotated[Any, _FREELANCER] = None
    working_hours: Annotated[Any, _FREELANCER] = None
    languages: Annotated[Any, _FREELANCER] = None
    portfolio_links: Annotated[list[str] | None, _FREELANCER] = None
    website: Annotated[str | None, _FREELANCER] = None


def _derive_ownership() -> Mapping[str, tuple[str, ...]]:
    table: dict[str, tuple[str, ...]] = {}
    for name, info in ProfilePatch.model_fields.items():
        owners = [item for item in info.metadata if isinstance(item, OwnedBy)]
        if len(owners) != 1:
            msg = f"ProfilePatch.{name} must declare exactly one OwnedBy marker"
            raise TypeError(msg)
        table[info.alias or name] = owners[0].collections
    return MappingProxyType(table)


FIELD_OWNERSHIP: Final = _derive_ownership()
"""Store field name -> owning collections."""


def owned_fields(collection: str) -> frozenset[str]:
    return frozenset(name for name, owners in FIELD_OWNERSHIP.items() if collection in owners)


def parse_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a raw patch and keep only the fields it actually set.

    Returns:
        Store field name -> value.

    Raises:
        ValidationError: When a known field has an unusable value.
    """
    try:
        model = ProfilePatch.model_validate(dict(patch))
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first["loc"]) or "patch"
        raise ValidationError(loc, first["msg"]) from exc
    return model.model_dump(by_alias=True, exclude_unset=True)


def route_fields(fields: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Split parsed patch fields into per-collection buckets."""
    buckets: dict[str, dict[str, Any]] = {collection: {} for collection in WRITE_ORDER}
    for name, value in fields.items():
        for collection in FIELD_OWNERSHIP[name]:
            buckets[collection][name] = value
    return buckets


def merge_profile(
    user: Mapping[str, Any] | None,
    client: Mapping[str, Any] | None,
    freelancer: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Merge the three profile documents into one read model.

    Precedence, lowest to highest: the UserRecord, then ClientProfile
    fields, then FreelancerProfile fields (only when the user is a
    freelancer). ``bio`` is the exception: a non-empty freelancer bio wins,
    otherwise the client bio is used. Bookkeeping fields (``userId`` and
    timestamps) always come from the UserRecord.

    Args:
        user: UserRecord data.
        client: ClientProfile data, if any.
        freelancer: FreelancerProfile data, if any.

    Returns:
        Merged profile dictionary.
    """
    merged: dict[str, Any] = dict(user or {})
    user_bio = merged.get("bio") or ""
    is_freelancer = bool(merged.get("isFreelancer"))
    for overlay in (client, freelancer if is_freelancer else None):
        for name, value in (overlay or {}).items():
            if name not in _BOOKKEEPING_FIELDS:
                merged[name] = value

    client_bio = (client or {}).get("bio") or ""
    freelancer_bio = ((freelancer or {}).get("bio") or "") if is_freelancer else ""
    merged["bio"] = freelancer_bio or client_bio or user_bio
    return merged


@dataclass
class ProfileUpdateResult:
    """Outcome of a routed profile update.

    Attributes:
        user_id: Updated user.
        written: Collections written, in write order.
        ignored: Patch keys that no collection owns.
    """

    user_id: str
    written: list[str] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)


class ProfileFieldRouter:
    """Applies profile patches across the three profile documents.

    Args:
        store: Document store.
        schema: Schema validator, used to seed a FreelancerProfile on role upgrade.
        notifier: Optional change notifier; ``PROFILE_UPDATED`` is published
            after a successful update.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        schema: SchemaValidator | None = None,
        notifier: ChangeNotifier | None = None,
    ) -> None:
        self._store = store
        self._schema = schema or SchemaValidator()
        self._notifier = notifier

    async def apply_update(
        self,
        user_id: str,
        patch: Mapping[str, Any],
    ) -> ProfileUpdateResult:
        """Route a patch to its owning collections.

        Args:
            user_id: User to update.
            patch: Raw field values; unknown keys are ignored.

        Returns:
            ProfileUpdateResult listing the collections written.

        Raises:
            ValidationError: A field value is unusable or breaks a role invariant.
            NotFoundError: The UserRecord does not exist.
            ProfileUpdateError: A write failed; ``written`` lists what landed.
        """
        fields = parse_patch(patch)
        known = set(FIELD_OWNERSHIP) | set(ProfilePatch.model_fields)
        result = ProfileUpdateResult(
            user_id=user_id,
            ignored=sorted(key for key in patch if key not in known),
        )

        user_doc = await self._store.get(USERS, user_id)
        if user_doc is None:
            raise NotFoundError("UserRecord", user_id)

        buckets = route_fields(fields)
        roles = self._apply_user_rules(buckets[USERS], user_doc)
        is_freelancer = Role.FREELANCER in roles
        upgraded = is_freelancer and Role.FREELANCER not in derive_roles(
            user_doc.data.get("roles")
        )

        for collection in WRITE_ORDER:
            data = buckets[collection]
            if collection == FREELANCER_PROFILES:
                if not is_freelancer:
                    if data:
                        logger.debug(
                            "profile_freelancer_fields_skipped",
                            extra={"user_id": user_id, "fields": sorted(data)},
                        )
                    continue
                if upgraded:
                    data = await self._seed_freelancer_profile(user_id, data)
            if not data:
                continue
            try:
                await self._write(collection, user_id, data)
            except DomainError as exc:
                logger.warning(
                    "profile_update_partial",
                    extra={
                        "user_id": user_id,
                        "collection": collection,
                        "written": list(result.written),
                        "error": str(exc),
                    },
                )
                raise ProfileUpdateError(user_id, collection, list(result.written)) from exc
            result.written.append(collection)

        logger.info(
            "profile_updated",
            extra={"user_id": user_id, "written": result.written, "ignored": result.ignored},
        )
        if self._notifier is not None and result.written:
            await self._notifier.publish(
                ChangeTopic.PROFILE_UPDATED, user_id=user_id, written=list(result.written)
            )
        return result

    async def load_profile(self, user_id: str, user_doc: Document | None = None) -> dict[str, Any]:
        """Read the three profile documents and merge them.

        Args:
            user_id: User to read.
            user_doc: Already-read UserRecord, to avoid a second read.

        Raises:
            NotFoundError: The UserRecord does not exist.
        """

        async def _read(collection: str) -> Document | None:
            if collection == USERS and user_doc is not None:
                return user_doc
            return await self._store.get(collection, user_id)

        user, client, freelancer = await gather_bounded(
            [lambda c=collection: _read(c) for collection in WRITE_ORDER],
            limit=len(WRITE_ORDER),
        )
        if user is None:
            raise NotFoundError("UserRecord", user_id)
        return merge_profile(
            user.data,
            client.data if client else None,
            freelancer.data if freelancer else None,
        )

    def _apply_user_rules(self, data: dict[str, Any], user_doc: Document) -> tuple[Role, ...]:
        """Normalize UserRecord fields in place and return the resulting roles."""
        for name in ("email", "username"):
            if name in data:
                value = (data[name] or "").strip().lower()
                if not value:
                    raise ValidationError(name, "cannot be empty")
                data[name] = value
        if "displayName" in data:
            value = (data["displayName"] or "").strip()
            if not value:
                raise ValidationError("displayName", "cannot be empty")
            data["displayName"] = value
        if "profilePhoto" in data:
            data["profilePhoto"] = self._schema.normalize_photo(data["profilePhoto"])

        current = derive_roles(user_doc.data.get("roles"))
        roles = current
        if "roles" in data:
            requested = data["roles"] or []
            parsed = [Role.parse(item) for item in requested]
            if not requested or any(role is None for role in parsed):
                raise ValidationError("roles", "must be a non-empty list of known roles")
            if any(role not in current for role in reserved_roles(parsed)):
                raise ValidationError("roles", "the admin role cannot be self-assigned")
            roles = derive_roles(requested)
            if Role.FREELANCER in current and Role.FREELANCER not in roles:
                raise ValidationError("roles", "the freelancer role cannot be removed")
            # Roles granted out of band survive a self-service patch.
            roles = (
                *roles,
                *(r for r in current if r not in SELF_ASSIGNABLE_ROLES and r not in roles),
            )
            data["roles"] = [role.value for role in roles]
            data["isFreelancer"] = Role.FREELANCER in roles

        if "activeRole" in data:
            active = Role.parse(data["activeRole"])
            if active is None or active not in roles:
                raise ValidationError("activeRole", "must be one of the user's roles")
            data["activeRole"] = active.value
        elif "roles" in data and Role.parse(user_doc.data.get("activeRole")) not in roles:
            data["activeRole"] = roles[0].value
        return roles

    async def _seed_freelancer_profile(
        self, user_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        existing = await self._store.get(FREELANCER_PROFILES, user_id)
        if existing is not None:
            return data
        return {**self._schema.freelancer_profile_data(user_id, {}), **data}

    async def _write(self, collection: str, user_id: str, data: dict[str, Any]) -> None:
        payload = {**data, "updatedAt": SERVER_TIMESTAMP}
        if collection == USERS:
            await self._store.update(USERS, user_id, payload)
        else:
            await self._store.set(collection, user_id, {**payload, "userId": user_id}, merge=True)
