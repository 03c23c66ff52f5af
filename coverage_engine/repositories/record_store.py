"""Path-addressed hierarchical document store on top of async SQLAlchemy.

The catalog is a tree of documents (``products/{id}/coverages/{id}/limits/{id}``).
This module exposes the primitives every other component builds on:

- point reads and collection listings,
- ``set`` / ``update`` / ``delete`` writes,
- atomic write batches and read-modify-write transactions,
- an append-only change feed.

Every store call is retried with bounded exponential backoff on transient
failures. Optimistic version conflicts are retried the same way, re-running
the whole transaction function against fresh data.
"""

import asyncio
import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from coverage_engine.core.exceptions import (
    ConcurrentModificationError,
    RecordNotFoundError,
    TransientStoreError,
)
from coverage_engine.database.models import StoreChange, StoreDocument
from coverage_engine.repositories.base_repository import BaseRepository
from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


def split_path(path: str) -> Tuple[str, str]:
    """Split a document path into (collection path, document id).

    Raises:
        ValueError: If the path does not address a document
    """
    segments = path.strip("/").split("/")
    if len(segments) % 2 != 0 or any(not segment for segment in segments):
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(segments[:-1]), segments[-1]


@dataclass
class DocumentSnapshot:
    """Detached copy of a stored document."""
    path: str
    id: str
    data: Dict[str, Any]
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: StoreDocument) -> "DocumentSnapshot":
        return cls(
            path=row.path,
            id=row.doc_id,
            data=copy.deepcopy(row.data or {}),
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


@dataclass
class ChangeRecord:
    sequence: int
    path: str
    operation: str
    changed_at: datetime


class StoreTransaction(BaseRepository[StoreDocument]):
    """Document operations bound to one session and one database transaction."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, StoreDocument)

    async def get(self, path: str) -> Optional[DocumentSnapshot]:
        split_path(path)
        row = await self.get_by_id(path)
        return DocumentSnapshot.from_row(row) if row is not None else None

    async def list(self, collection: str) -> List[DocumentSnapshot]:
        """List a collection in creation order."""
        rows = await self.get_all(
            filters={"collection": collection.strip("/")},
            order_by=("created_at", "doc_id"),
        )
        return [DocumentSnapshot.from_row(row) for row in rows]

    async def has_documents(self, collection: str) -> bool:
        return await self.count(filters={"collection": collection.strip("/")}) > 0

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        """Create or overwrite a document; ``merge`` keeps fields not in ``data``."""
        collection, doc_id = split_path(path)
        row = await self.get_by_id(path)
        if row is None:
            await self.create(
                path=path, collection=collection, doc_id=doc_id, data=copy.deepcopy(data)
            )
        else:
            body = {**row.data, **data} if merge else data
            row.data = copy.deepcopy(body)
            await self.session.flush()
        self._record_change(path, "set")

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        """Merge top-level fields into an existing document.

        Raises:
            RecordNotFoundError: If the document does not exist
        """
        row = await self.get_by_id(path)
        if row is None:
            raise RecordNotFoundError(path)
        row.data = {**row.data, **copy.deepcopy(fields)}
        await self.session.flush()
        self._record_change(path, "update")

    async def delete(self, path: str) -> bool:
        """Delete a document; returns False if it did not exist."""
        row = await self.get_by_id(path)
        if row is None:
            return False
        await self.remove(row)
        self._record_change(path, "delete")
        return True

    async def changes(
        self, after_sequence: int = 0, prefix: Optional[str] = None, limit: int = 500
    ) -> List[ChangeRecord]:
        query = select(StoreChange).where(StoreChange.sequence > after_sequence)
        if prefix:
            root = prefix.strip("/")
            query = query.where(
                or_(
                    StoreChange.path == root,
                    StoreChange.path.startswith(f"{root}/", autoescape=True),
                )
            )
        query = query.order_by(StoreChange.sequence).limit(limit)
        result = await self.session.execute(query)
        return [
            ChangeRecord(
                sequence=row.sequence,
                path=row.path,
                operation=row.operation,
                changed_at=row.changed_at,
            )
            for row in result.scalars().all()
        ]

    def _record_change(self, path: str, operation: str) -> None:
        self.session.add(StoreChange(path=path, operation=operation))


class WriteBatch:
    """Writes collected in memory and committed in one transaction."""

    def __init__(self, store: "RecordStore"):
        self._store = store
        self._operations: List[Tuple[str, str, Dict[str, Any]]] = []

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        split_path(path)
        self._operations.append(("merge" if merge else "set", path, copy.deepcopy(data)))
        return self

    def update(self, path: str, fields: Dict[str, Any]) -> "WriteBatch":
        split_path(path)
        self._operations.append(("update", path, copy.deepcopy(fields)))
        return self

    def delete(self, path: str) -> "WriteBatch":
        split_path(path)
        self._operations.append(("delete", path, {}))
        return self

    def __len__(self) -> int:
        return len(self._operations)

    async def commit(self) -> None:
        operations = list(self._operations)

        async def apply(txn: StoreTransaction) -> None:
            for operation, path, payload in operations:
                if operation == "delete":
                    await txn.delete(path)
                elif operation == "update":
                    await txn.update(path, payload)
                else:
                    await txn.set(path, payload, merge=operation == "merge")

        await self._store.run_transaction(apply, description=f"batch of {len(operations)} writes")
        self._operations.clear()


class RecordStore:
    """Client for the hierarchical record store."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        max_retries: int = 3,
        retry_delay: float = 0.5,
        max_retry_delay: float = 8.0,
    ):
        """Initialize the store client.

        Args:
            session_maker: Factory for async sessions bound to the store database
            max_retries: Maximum attempts per store call
            retry_delay: Base delay for exponential backoff (seconds)
            max_retry_delay: Upper bound for a single backoff wait (seconds)
        """
        self.session_maker = session_maker
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay

    @classmethod
    def from_settings(cls, session_maker: async_sessionmaker[AsyncSession], store_settings) -> "RecordStore":
        return cls(
            session_maker,
            max_retries=store_settings.max_retries,
            retry_delay=store_settings.retry_delay,
            max_retry_delay=store_settings.max_retry_delay,
        )

    async def run_transaction(
        self,
        fn: Callable[[StoreTransaction], Awaitable[T]],
        description: str = "transaction",
    ) -> T:
        """Run ``fn`` inside one database transaction, retrying on conflicts.

        ``fn`` may be called more than once, so it must derive everything it
        writes from what it reads through the transaction. Exceptions other
        than transient store failures roll the transaction back and propagate
        unchanged.
        """

        async def attempt() -> T:
            async with self.session_maker() as session:
                async with session.begin():
                    return await fn(StoreTransaction(session))

        return await self._with_retry(attempt, description)

    async def get(self, path: str) -> Optional[DocumentSnapshot]:
        return await self.run_transaction(lambda txn: txn.get(path), f"get {path}")

    async def list_collection(self, collection: str) -> List[DocumentSnapshot]:
        return await self.run_transaction(lambda txn: txn.list(collection), f"list {collection}")

    async def list_ids(self, collection: str) -> List[str]:
        return [snapshot.id for snapshot in await self.list_collection(collection)]

    async def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self.run_transaction(lambda txn: txn.set(path, data, merge=merge), f"set {path}")

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        await self.run_transaction(lambda txn: txn.update(path, fields), f"update {path}")

    async def delete(self, path: str) -> bool:
        return await self.run_transaction(lambda txn: txn.delete(path), f"delete {path}")

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def changes(
        self, after_sequence: int = 0, prefix: Optional[str] = None, limit: int = 500
    ) -> List[ChangeRecord]:
        """Read the change feed after a sequence number, optionally under a path prefix."""
        return await self.run_transaction(
            lambda txn: txn.changes(after_sequence=after_sequence, prefix=prefix, limit=limit),
            "read change feed",
        )

    async def _with_retry(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        last_error: Optional[Exception] = None
        error_cls = TransientStoreError

        for attempt in range(self.max_retries):
            try:
                return await operation()
            except (StaleDataError, IntegrityError) as e:
                # Another writer changed or created the same document first
                last_error, error_cls = e, ConcurrentModificationError
            except (OperationalError, InterfaceError, OSError) as e:
                last_error, error_cls = e, TransientStoreError
            except DBAPIError as e:
                if not e.connection_invalidated:
                    raise
                last_error, error_cls = e, TransientStoreError

            if attempt < self.max_retries - 1:
                LOGGER.warning(
                    f"{description} failed, retrying (attempt {attempt + 1}/{self.max_retries})",
                    extra={"error": str(last_error)},
                )
                await self._wait_before_retry(attempt)

        LOGGER.error(
            f"{description} failed after {self.max_retries} attempts",
            extra={"error": str(last_error)},
        )
        raise error_cls(
            f"{description} failed after {self.max_retries} attempts: {last_error}",
            original_error=last_error,
        )

    async def _wait_before_retry(self, attempt: int) -> None:
        """Wait before retrying with exponential backoff.

        Args:
            attempt: Zero-based attempt number that just failed
        """
        wait_time = min(self.retry_delay * (2**attempt), self.max_retry_delay)
        LOGGER.debug("Waiting before retry", extra={"wait_seconds": wait_time})
        await asyncio.sleep(wait_time)
