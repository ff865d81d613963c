"""
Storage contracts

The pipeline talks to its two collaborators, an object store for raw feed
blobs and a document store for channels and programs, only through these
protocols. Concrete implementations live in guiatv.storage (files) and
guiatv.database (SQLite documents).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Literal, Protocol, runtime_checkable

# Per-commit mutation cap imposed by the document store
MAX_BATCH_OPERATIONS = 500


@dataclass(frozen=True, slots=True)
class Operation:
    """A single staged mutation inside a batch commit."""
    kind: Literal["create", "update", "delete"]
    document_id: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, document_id: str, data: dict[str, Any]) -> Operation:
        return cls("create", document_id, dict(data))

    @classmethod
    def update(cls, document_id: str, fields: dict[str, Any]) -> Operation:
        return cls("update", document_id, dict(fields))

    @classmethod
    def delete(cls, document_id: str) -> Operation:
        return cls("delete", document_id)


@dataclass(slots=True)
class Document:
    id: str
    data: dict[str, Any]


@dataclass(slots=True)
class Page:
    documents: list[Document]
    next_cursor: str | None = None

    @property
    def empty(self) -> bool:
        return not self.documents


@runtime_checkable
class DocumentStore(Protocol):
    """Paginated document store with bounded batch commits."""

    def allocate_id(self, collection: str) -> str:
        ...

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        page_size: int = 100,
        cursor: str | None = None,
    ) -> Page:
        ...

    async def get(self, collection: str, document_id: str) -> Document | None:
        ...

    async def batch_commit(self, collection: str, operations: list[Operation]) -> None:
        ...


class BlobWriter(Protocol):
    async def write(self, data: bytes) -> None:
        ...


@runtime_checkable
class ObjectStore(Protocol):
    """Blob store used as the durable feed cache."""

    async def exists(self, path: str) -> bool:
        ...

    async def upload(self, path: str, data: bytes, *, content_type: str = "application/octet-stream") -> str:
        ...

    async def download(self, path: str) -> bytes:
        ...

    async def delete(self, path: str) -> None:
        ...

    async def get_metadata(self, path: str) -> dict[str, Any]:
        ...

    async def list(self, prefix: str = "") -> list[str]:
        ...

    def public_url(self, path: str) -> str:
        ...

    async def signed_url(self, path: str, ttl_minutes: int = 60) -> str:
        ...

    def open_writer(self, path: str, *, content_type: str = "application/octet-stream") -> AsyncContextManager[BlobWriter]:
        ...


__all__ = [
    "MAX_BATCH_OPERATIONS",
    "BlobWriter",
    "Document",
    "DocumentStore",
    "ObjectStore",
    "Operation",
    "Page",
]
