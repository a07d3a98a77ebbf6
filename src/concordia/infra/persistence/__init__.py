"""Concordia Infra Persistence -- document store adapters."""

from concordia.infra.persistence.firestore import (
    FirestoreDocumentStore,
    FirestoreManager,
    get_firestore_manager,
    translate_error,
)
from concordia.infra.persistence.lifespan import lifespan_contribution
from concordia.infra.persistence.memory import InMemoryDocumentStore
from concordia.infra.persistence.retrying import RetryingDocumentStore
from concordia.infra.persistence.settings import FirestoreSettings, get_firestore_settings

__all__ = [
    "FirestoreDocumentStore",
    "FirestoreManager",
    "FirestoreSettings",
    "InMemoryDocumentStore",
    "RetryingDocumentStore",
    "get_firestore_manager",
    "get_firestore_settings",
    "lifespan_contribution",
    "translate_error",
]
