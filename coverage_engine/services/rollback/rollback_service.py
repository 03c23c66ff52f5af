"""Rollback of a migrated coverage back to its legacy representation."""

from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from coverage_engine.core.exceptions import RollbackNotConfirmedError, RollbackUnsafeError
from coverage_engine.database.models import utcnow
from coverage_engine.repositories.coverage_repository import CoverageRepository
from coverage_engine.repositories.record_store import RecordStore, StoreTransaction
from coverage_engine.schemas.coverage import Deductible, Limit, RecordSource
from coverage_engine.services.parsing.value_parser import ValueParser
from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


class RollbackReport(BaseModel):
    product_id: str
    coverage_id: str
    dry_run: bool
    was_migrated: bool = False
    cleared_marker: bool = False
    deleted_limits: List[str] = Field(default_factory=list)
    deleted_deductibles: List[str] = Field(default_factory=list)
    authored_limits: List[str] = Field(default_factory=list)
    authored_deductibles: List[str] = Field(default_factory=list)
    legacy_limits: List[str] = Field(default_factory=list)
    legacy_deductibles: List[str] = Field(default_factory=list)


class RollbackService:
    """Deletes a migrated coverage's typed records and clears its migration marker.

    The legacy arrays are never modified, so after a rollback the coverage
    is back in the legacy state and reads come from those arrays. Records
    written through the accessors are deleted too: with dual-write on their
    values already live in the arrays. A rollback that would drop an
    authored value the arrays do not hold is refused.

    Coverages without ``migratedAt`` are left alone.
    """

    def __init__(self, store: RecordStore, parser: Optional[ValueParser] = None):
        self.store = store
        self.parser = parser or ValueParser()

    async def rollback(
        self,
        product_id: str,
        coverage_id: str,
        dry_run: bool = True,
        confirm: bool = False,
        reason: Optional[str] = None,
    ) -> RollbackReport:
        """Roll one coverage back.

        Args:
            product_id: Product owning the coverage
            coverage_id: Coverage to roll back
            dry_run: Only report what would be deleted
            confirm: Required for a live rollback
            reason: Free-text reason, logged with the rollback

        Raises:
            RollbackNotConfirmedError: If a live rollback is not confirmed
            RollbackUnsafeError: If authored values are missing from the legacy arrays
            CoverageNotFoundError: If the coverage does not exist
        """
        if not dry_run and not confirm:
            raise RollbackNotConfirmedError(
                f"Rollback of {product_id}/{coverage_id} deletes records; pass confirm=True to proceed"
            )

        async def apply(txn: StoreTransaction) -> RollbackReport:
            repo = CoverageRepository(txn)
            coverage = await repo.require_coverage(product_id, coverage_id)
            report = RollbackReport(
                product_id=product_id,
                coverage_id=coverage_id,
                dry_run=dry_run,
                was_migrated=coverage.is_migrated,
                legacy_limits=coverage.legacy_limits,
                legacy_deductibles=coverage.legacy_deductibles,
            )
            if not coverage.is_migrated:
                return report

            limits = await repo.list_limits(product_id, coverage_id)
            deductibles = await repo.list_deductibles(product_id, coverage_id)
            report.cleared_marker = True
            report.deleted_limits = [limit.id for limit in limits]
            report.deleted_deductibles = [deductible.id for deductible in deductibles]
            report.authored_limits = self._authored(limits)
            report.authored_deductibles = self._authored(deductibles)

            unheld_limits = self._unheld(limits, coverage.legacy_limits, self.parser.render_limit)
            unheld_deductibles = self._unheld(
                deductibles, coverage.legacy_deductibles, self.parser.render_deductible
            )
            if unheld_limits or unheld_deductibles:
                raise RollbackUnsafeError(
                    f"Rollback of {product_id}/{coverage_id} would discard authored records "
                    f"missing from the legacy arrays: {unheld_limits + unheld_deductibles}",
                    limits=unheld_limits,
                    deductibles=unheld_deductibles,
                )

            if dry_run:
                return report

            for limit_id in report.deleted_limits:
                await repo.delete_limit(product_id, coverage_id, limit_id)
            for deductible_id in report.deleted_deductibles:
                await repo.delete_deductible(product_id, coverage_id, deductible_id)
            await repo.update_coverage(
                product_id,
                coverage_id,
                {"migratedAt": None, "updatedAt": utcnow().isoformat()},
            )
            return report

        report = await self.store.run_transaction(apply, f"rollback {coverage_id}")

        if not report.was_migrated:
            LOGGER.info(f"Coverage {product_id}/{coverage_id} is not migrated; nothing to roll back")
            return report
        if report.authored_limits or report.authored_deductibles:
            LOGGER.info(
                f"Authored records on {product_id}/{coverage_id} fall back to their legacy entries: "
                f"{report.authored_limits + report.authored_deductibles}"
            )
        LOGGER.info(
            f"{'Dry-run rollback' if dry_run else 'Rolled back'} {product_id}/{coverage_id}: "
            f"{len(report.deleted_limits)} limit(s), {len(report.deleted_deductibles)} deductible(s)"
            + (f" ({reason})" if reason else "")
        )
        return report

    @staticmethod
    def _authored(records: Sequence[Union[Limit, Deductible]]) -> List[str]:
        return [record.id for record in records if record.source is RecordSource.AUTHORING]

    @staticmethod
    def _unheld(records: Sequence[Union[Limit, Deductible]], legacy: Sequence[str], render) -> List[str]:
        """Ids of authored records whose rendered value is not in the legacy array."""
        held = set(legacy)
        return [
            record.id
            for record in records
            if record.source is RecordSource.AUTHORING and render(record) not in held
        ]
