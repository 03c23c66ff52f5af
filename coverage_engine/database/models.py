"""SQLAlchemy models backing the hierarchical record store.

Every catalog document (product, coverage, limit, deductible) is one row keyed
by its slash-separated path, e.g.
``products/p1/coverages/c1/limits/l1``. ``collection`` is the path of the
parent collection so child listing is a single indexed lookup.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, BigInteger, Index, Integer, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from coverage_engine.core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
DocumentBody = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoreDocument(Base):
    """One path-addressed document."""

    __tablename__ = "store_documents"

    path: Mapped[str] = mapped_column(String, primary_key=True)
    collection: Mapped[str] = mapped_column(String, nullable=False)
    doc_id: Mapped[str] = mapped_column(String, nullable=False)
    data: Mapped[Dict[str, Any]] = mapped_column(DocumentBody, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # Optimistic concurrency: every UPDATE checks and bumps ``version``
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_store_documents_collection", "collection", "created_at", "doc_id"),
    )


class StoreChange(Base):
    """Append-only change feed entry written alongside every mutation."""

    __tablename__ = "store_changes"

    sequence: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True
    )
    path: Mapped[str] = mapped_column(String, nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String, nullable=False)  # set | update | delete
    changed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
