"""
SQLite-backed document store

Implements the DocumentStore contract on top of SQLAlchemy's asyncio
extension. The store is an explicitly constructed client: the caller owns
its lifecycle through open()/close() or `async with`.
"""
import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, event, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from guiatv.exceptions import BatchLimitExceededError
from guiatv.models import Base, DocumentRow
from guiatv.stores import MAX_BATCH_OPERATIONS, Document, Operation, Page

logger = logging.getLogger(__name__)


def _create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory from engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


class SQLiteDocumentStore:
    """Document store persisting every collection into one SQLite table."""

    def __init__(
        self,
        database_path: str,
        *,
        max_batch_operations: int = MAX_BATCH_OPERATIONS,
        journal_mode: str = "WAL",
    ) -> None:
        self.database_path = database_path
        self.max_batch_operations = max_batch_operations
        self._journal_mode = journal_mode
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def open(self) -> None:
        """Initialize database schema and engine"""
        if self._engine is not None:
            return

        logger.info("Initializing document store at %s", self.database_path)

        self._engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.database_path}",
            echo=False,
            future=True,
            pool_pre_ping=True,
            connect_args={"timeout": 30, "check_same_thread": False},
        )

        journal_mode = self._journal_mode

        def configure_sqlite(dbapi_conn, _):
            """Configure SQLite connection parameters"""
            cursor = dbapi_conn.cursor()
            cursor.execute(f"PRAGMA journal_mode = {journal_mode}")
            cursor.execute("PRAGMA cache_size = -64000")
            cursor.close()

        event.listen(self._engine.sync_engine, "connect", configure_sqlite)

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self._session_factory = _create_session_factory(self._engine)
        logger.info("Document store initialized successfully")

    async def close(self) -> None:
        """Close database connections on shutdown"""
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Document store connections closed")
        self._engine = None
        self._session_factory = None

    async def __aenter__(self) -> "SQLiteDocumentStore":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """Session wrapped in a transaction that commits or rolls back as a unit."""
        if self._session_factory is None:
            raise RuntimeError("Document store not initialized. Call open() first.")

        async with self._session_factory() as session:
            async with session.begin():
                yield session

    def allocate_id(self, collection: str) -> str:
        return uuid4().hex

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        page_size: int = 100,
        cursor: str | None = None,
    ) -> Page:
        """
        Read one page of a collection ordered by document id

        Args:
            collection: Collection name
            filters: Optional top-level field equality filters
            page_size: Maximum documents in the page
            cursor: Id of the last document of the previous page

        Returns:
            Page with documents and the cursor for the next page (None at the end)
        """
        if page_size <= 0:
            raise ValueError("page_size must be > 0")

        stmt = select(DocumentRow).where(DocumentRow.collection == collection)
        for field_name, value in (filters or {}).items():
            stmt = stmt.where(func.json_extract(DocumentRow.data, f"$.{field_name}") == value)
        if cursor is not None:
            stmt = stmt.where(DocumentRow.id > cursor)
        stmt = stmt.order_by(DocumentRow.id).limit(page_size)

        async with self.session_scope() as session:
            rows = (await session.execute(stmt)).scalars().all()
            documents = [Document(id=row.id, data=dict(row.data or {})) for row in rows]

        next_cursor = documents[-1].id if len(documents) == page_size else None
        logger.debug(
            "Queried %s: %s documents (cursor=%s, next=%s)",
            collection,
            len(documents),
            cursor,
            next_cursor,
        )
        return Page(documents=documents, next_cursor=next_cursor)

    async def get(self, collection: str, document_id: str) -> Document | None:
        async with self.session_scope() as session:
            row = await session.get(DocumentRow, (collection, document_id))
            if row is None:
                return None
            return Document(id=row.id, data=dict(row.data or {}))

    async def count(self, collection: str) -> int:
        async with self.session_scope() as session:
            result = await session.execute(
                select(func.count()).select_from(DocumentRow).where(DocumentRow.collection == collection)
            )
            return result.scalar_one()

    async def batch_commit(self, collection: str, operations: list[Operation]) -> None:
        """
        Apply a batch of operations atomically

        Raises:
            BatchLimitExceededError: If the batch exceeds the per-commit cap
            KeyError: If an update targets a missing document
        """
        if len(operations) > self.max_batch_operations:
            raise BatchLimitExceededError(len(operations), self.max_batch_operations)
        if not operations:
            return

        async with self.session_scope() as session:
            for operation in operations:
                if operation.kind == "create":
                    session.add(DocumentRow(
                        collection=collection,
                        id=operation.document_id,
                        data=dict(operation.data),
                    ))
                elif operation.kind == "update":
                    row = await session.get(DocumentRow, (collection, operation.document_id))
                    if row is None:
                        raise KeyError(f"No document {collection}/{operation.document_id} to update")
                    # Reassign so SQLAlchemy detects the JSON change
                    row.data = {**(row.data or {}), **operation.data}
                elif operation.kind == "delete":
                    await session.execute(
                        delete(DocumentRow).where(
                            DocumentRow.collection == collection,
                            DocumentRow.id == operation.document_id,
                        )
                    )
                else:
                    raise ValueError(f"Unknown operation kind: {operation.kind}")

        logger.debug("Committed %s operations to %s", len(operations), collection)
