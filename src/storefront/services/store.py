"""Document store backends for the inventory and orders services."""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from storefront.core.config import Settings
from .exceptions import DocumentStoreError, DuplicateDocumentError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Filter = Dict[str, Any]


class DocumentStore(ABC):
    """
    Abstract base class for document stores.

    Documents are plain dicts keyed by ``_id``. Filters use the Mongo query
    shape restricted to equality and the ``$eq``, ``$ne``, ``$gt``, ``$gte``,
    ``$lt``, ``$lte`` and ``$in`` operators.
    """

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> None:
        """Insert a document. Raises DuplicateDocumentError if ``_id`` exists."""

    @abstractmethod
    async def find_one(self, collection: str, document_id: str) -> Optional[Document]:
        """Return the document with this id, or None."""

    @abstractmethod
    async def find(self, collection: str, filter: Optional[Filter] = None,
                   skip: int = 0, limit: int = 0) -> List[Document]:
        """Return matching documents in insertion order; ``limit=0`` means no limit."""

    @abstractmethod
    async def count(self, collection: str, filter: Optional[Filter] = None) -> int:
        """Count matching documents."""

    @abstractmethod
    async def update_one(self, collection: str, document_id: str,
                         fields: Document) -> Optional[Document]:
        """Set ``fields`` on a document and return it updated, or None if missing."""

    @abstractmethod
    async def delete_one(self, collection: str, document_id: str) -> bool:
        """Delete a document; False if it did not exist."""

    async def close(self) -> None:
        """Release backend resources."""


def _compare(value: Any, operator: str, operand: Any) -> bool:
    if operator == "$eq":
        return value == operand
    if operator == "$ne":
        return value != operand
    if operator == "$in":
        return value in operand
    if value is None:
        return False
    if operator == "$gt":
        return value > operand
    if operator == "$gte":
        return value >= operand
    if operator == "$lt":
        return value < operand
    if operator == "$lte":
        return value <= operand
    raise DocumentStoreError(f"Unsupported filter operator: {operator}", "unsupported_operator")


def matches(document: Document, filter: Optional[Filter]) -> bool:
    """Evaluate a Mongo-style filter against a document in memory."""
    for field, condition in (filter or {}).items():
        value = document.get(field)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            if not all(_compare(value, op, operand) for op, operand in condition.items()):
                return False
        elif value != condition:
            return False
    return True


class MemoryDocumentStore(DocumentStore):
    """Thread-safe in-memory document store."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = threading.Lock()

    def _collection(self, name: str) -> Dict[str, Document]:
        return self._collections.setdefault(name, {})

    async def insert_one(self, collection: str, document: Document) -> None:
        with self._lock:
            documents = self._collection(collection)
            document_id = document["_id"]
            if document_id in documents:
                raise DuplicateDocumentError(collection, document_id)
            documents[document_id] = copy.deepcopy(document)

    async def find_one(self, collection: str, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._collection(collection).get(document_id)
            return copy.deepcopy(document) if document is not None else None

    async def find(self, collection: str, filter: Optional[Filter] = None,
                   skip: int = 0, limit: int = 0) -> List[Document]:
        with self._lock:
            found = [doc for doc in self._collection(collection).values() if matches(doc, filter)]
            found = found[skip:skip + limit] if limit else found[skip:]
            return copy.deepcopy(found)

    async def count(self, collection: str, filter: Optional[Filter] = None) -> int:
        with self._lock:
            return sum(1 for doc in self._collection(collection).values() if matches(doc, filter))

    async def update_one(self, collection: str, document_id: str,
                         fields: Document) -> Optional[Document]:
        with self._lock:
            document = self._collection(collection).get(document_id)
            if document is None:
                return None
            document.update(copy.deepcopy(fields))
            return copy.deepcopy(document)

    async def delete_one(self, collection: str, document_id: str) -> bool:
        with self._lock:
            return self._collection(collection).pop(document_id, None) is not None


class MongoDocumentStore(DocumentStore):
    """MongoDB document store on the motor asyncio driver."""

    def __init__(self, url: str, database: str, timeout_ms: int = 10000):
        self._client = AsyncIOMotorClient(
            url,
            tz_aware=True,
            serverSelectionTimeoutMS=timeout_ms
        )
        self._db = self._client[database]

    async def insert_one(self, collection: str, document: Document) -> None:
        try:
            await self._db[collection].insert_one(document)
        except DuplicateKeyError as e:
            raise DuplicateDocumentError(collection, document["_id"]) from e
        except PyMongoError as e:
            raise DocumentStoreError(str(e)) from e

    async def find_one(self, collection: str, document_id: str) -> Optional[Document]:
        try:
            return await self._db[collection].find_one({"_id": document_id})
        except PyMongoError as e:
            raise DocumentStoreError(str(e)) from e

    async def find(self, collection: str, filter: Optional[Filter] = None,
                   skip: int = 0, limit: int = 0) -> List[Document]:
        try:
            cursor = self._db[collection].find(filter or {}).skip(skip).limit(limit)
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            raise DocumentStoreError(str(e)) from e

    async def count(self, collection: str, filter: Optional[Filter] = None) -> int:
        try:
            return await self._db[collection].count_documents(filter or {})
        except PyMongoError as e:
            raise DocumentStoreError(str(e)) from e

    async def update_one(self, collection: str, document_id: str,
                         fields: Document) -> Optional[Document]:
        try:
            return await self._db[collection].find_one_and_update(
                {"_id": document_id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise DocumentStoreError(str(e)) from e

    async def delete_one(self, collection: str, document_id: str) -> bool:
        try:
            result = await self._db[collection].delete_one({"_id": document_id})
        except PyMongoError as e:
            raise DocumentStoreError(str(e)) from e
        return result.deleted_count > 0

    async def close(self) -> None:
        self._client.close()


def create_document_store(settings: Settings) -> DocumentStore:
    """
    Create a document store based on configuration.

    Args:
        settings: Application settings

    Returns:
        DocumentStore for the configured backend
    """
    if settings.DOCUMENT_STORE_BACKEND == "memory":
        logger.warning("Using in-memory document store; data is lost on restart")
        return MemoryDocumentStore()
    elif settings.DOCUMENT_STORE_BACKEND == "mongo":
        logger.info(
            "Connecting to MongoDB",
            extra={"database": settings.MONGODB_DATABASE}
        )
        return MongoDocumentStore(
            settings.MONGODB_URL,
            settings.MONGODB_DATABASE,
            timeout_ms=settings.MONGODB_TIMEOUT_MS
        )
    else:
        raise ValueError(f"Unknown document store backend: {settings.DOCUMENT_STORE_BACKEND}")
