"""Concordia Infra Auth -- identity provider adapter."""

from concordia.infra.auth.identity_toolkit import (
    ERROR_REASONS,
    IdentityToolkitProvider,
    parse_error_code,
)
from concordia.infra.auth.settings import IdentityToolkitSettings, get_identity_toolkit_settings

__all__ = [
    "ERROR_REASONS",
    "IdentityToolkitProvider",
    "IdentityToolkitSettings",
    "get_identity_toolkit_settings",
    "parse_error_code",
]
