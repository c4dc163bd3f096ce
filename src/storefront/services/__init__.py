"""Backend services proxied by the gateway."""

from .exceptions import DocumentStoreError, DuplicateDocumentError
from .store import (
    DocumentStore,
    MemoryDocumentStore,
    MongoDocumentStore,
    create_document_store,
)

__all__ = [
    "DocumentStoreError",
    "DuplicateDocumentError",
    "DocumentStore",
    "MemoryDocumentStore",
    "MongoDocumentStore",
    "create_document_store",
]
