"""Document store exceptions."""

from typing import Optional


class DocumentStoreError(Exception):
    """Base exception for document store failures."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "document_store_error"


class DuplicateDocumentError(DocumentStoreError):
    """Exception raised when a document with the same id already exists."""

    def __init__(self, collection: str, document_id: str):
        super().__init__(
            f"Document '{document_id}' already exists in {collection}",
            "duplicate_document"
        )
        self.collection = collection
        self.document_id = document_id
