"""Domain port interfaces for hexagonal architecture.

Ports define abstract interfaces that the domain layer uses to interact
with external services. Implementations (adapters) live in infrastructure.
"""

from concordia.foundation.domain.ports.document_store import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    Document,
    DocumentStorePort,
    FieldFilter,
    FilterOp,
    OrderBy,
    WriteKind,
    WriteOp,
)
from concordia.foundation.domain.ports.identity_provider import (
    Identity,
    IdentityProviderPort,
)
from concordia.foundation.domain.ports.media_storage import MediaStoragePort

__all__ = [
    "DELETE_FIELD",
    "SERVER_TIMESTAMP",
    "Document",
    "DocumentStorePort",
    "FieldFilter",
    "FilterOp",
    "Identity",
    "IdentityProviderPort",
    "MediaStoragePort",
    "OrderBy",
    "WriteKind",
    "WriteOp",
]
