"""Typed access to products, coverages and their limit/deductible children."""

from typing import Any, Dict, List, Optional

from coverage_engine.core.exceptions import CoverageNotFoundError
from coverage_engine.repositories.record_store import DocumentSnapshot, StoreTransaction
from coverage_engine.schemas.coverage import Coverage, Deductible, Limit

PRODUCTS = "products"


def _check_id(value: str, kind: str) -> str:
    if not value or "/" in value:
        raise ValueError(f"Invalid {kind} id: {value!r}")
    return value


def product_path(product_id: str) -> str:
    return f"{PRODUCTS}/{_check_id(product_id, 'product')}"


def coverages_collection(product_id: str) -> str:
    return f"{product_path(product_id)}/coverages"


def coverage_path(product_id: str, coverage_id: str) -> str:
    return f"{coverages_collection(product_id)}/{_check_id(coverage_id, 'coverage')}"


def limits_collection(product_id: str, coverage_id: str) -> str:
    return f"{coverage_path(product_id, coverage_id)}/limits"


def limit_path(product_id: str, coverage_id: str, limit_id: str) -> str:
    return f"{limits_collection(product_id, coverage_id)}/{_check_id(limit_id, 'limit')}"


def deductibles_collection(product_id: str, coverage_id: str) -> str:
    return f"{coverage_path(product_id, coverage_id)}/deductibles"


def deductible_path(product_id: str, coverage_id: str, deductible_id: str) -> str:
    return f"{deductibles_collection(product_id, coverage_id)}/{_check_id(deductible_id, 'deductible')}"


def coverage_from_snapshot(snapshot: DocumentSnapshot, product_id: str) -> Coverage:
    return Coverage.model_validate({**snapshot.data, "id": snapshot.id, "productId": product_id})


def limit_from_snapshot(snapshot: DocumentSnapshot) -> Limit:
    return Limit.model_validate({**snapshot.data, "id": snapshot.id})


def deductible_from_snapshot(snapshot: DocumentSnapshot) -> Deductible:
    return Deductible.model_validate({**snapshot.data, "id": snapshot.id})


class CoverageRepository:
    """Repository for coverage documents and their child collections.

    Bound to one store transaction so reads and writes made through it are
    committed (or rolled back) together.
    """

    def __init__(self, txn: StoreTransaction):
        self.txn = txn

    async def list_product_ids(self) -> List[str]:
        return [snapshot.id for snapshot in await self.txn.list(PRODUCTS)]

    async def get_coverage(self, product_id: str, coverage_id: str) -> Optional[Coverage]:
        snapshot = await self.txn.get(coverage_path(product_id, coverage_id))
        if snapshot is None:
            return None
        return coverage_from_snapshot(snapshot, product_id)

    async def require_coverage(self, product_id: str, coverage_id: str) -> Coverage:
        """Get a coverage or raise.

        Raises:
            CoverageNotFoundError: If the coverage does not exist
        """
        coverage = await self.get_coverage(product_id, coverage_id)
        if coverage is None:
            raise CoverageNotFoundError(coverage_path(product_id, coverage_id))
        return coverage

    async def list_coverages(self, product_id: str) -> List[Coverage]:
        snapshots = await self.txn.list(coverages_collection(product_id))
        return [coverage_from_snapshot(snapshot, product_id) for snapshot in snapshots]

    async def list_limits(self, product_id: str, coverage_id: str) -> List[Limit]:
        snapshots = await self.txn.list(limits_collection(product_id, coverage_id))
        return [limit_from_snapshot(snapshot) for snapshot in snapshots]

    async def list_deductibles(self, product_id: str, coverage_id: str) -> List[Deductible]:
        snapshots = await self.txn.list(deductibles_collection(product_id, coverage_id))
        return [deductible_from_snapshot(snapshot) for snapshot in snapshots]

    async def has_limits(self, product_id: str, coverage_id: str) -> bool:
        return await self.txn.has_documents(limits_collection(product_id, coverage_id))

    async def has_deductibles(self, product_id: str, coverage_id: str) -> bool:
        return await self.txn.has_documents(deductibles_collection(product_id, coverage_id))

    async def save_limit(self, product_id: str, coverage_id: str, limit: Limit) -> None:
        await self.txn.set(limit_path(product_id, coverage_id, limit.id), limit.to_document())

    async def save_deductible(self, product_id: str, coverage_id: str, deductible: Deductible) -> None:
        await self.txn.set(
            deductible_path(product_id, coverage_id, deductible.id), deductible.to_document()
        )

    async def delete_limit(self, product_id: str, coverage_id: str, limit_id: str) -> bool:
        return await self.txn.delete(limit_path(product_id, coverage_id, limit_id))

    async def delete_deductible(self, product_id: str, coverage_id: str, deductible_id: str) -> bool:
        return await self.txn.delete(deductible_path(product_id, coverage_id, deductible_id))

    async def update_coverage(self, product_id: str, coverage_id: str, fields: Dict[str, Any]) -> None:
        """Merge camelCase fields into a coverage document."""
        await self.txn.update(coverage_path(product_id, coverage_id), fields)
