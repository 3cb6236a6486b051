"""
Storage subsystem for the Nexus orchestrator.
"""

from .cache import TTLCache
from .documents import (
    DocumentStore,
    InMemoryDocumentStore,
    LocalDocumentStore,
    QueryFilter,
)
from .models import DocumentModel

__all__ = [
    "DocumentModel",
    "DocumentStore",
    "InMemoryDocumentStore",
    "LocalDocumentStore",
    "QueryFilter",
    "TTLCache",
]
