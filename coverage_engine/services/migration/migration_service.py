"""Migration engine: legacy limit/deductible arrays to typed child records.

Products are processed one after another. Within a product, coverages are
ordered parents first and migrated by a bounded pool of asyncio tasks; a
sub-coverage waits for its parent to finish before taking a pool slot, so
its sublimits can be checked against the parent's limits.

Each coverage is its own unit of work. In live mode all of a coverage's
records and its ``migratedAt`` marker are written in one transaction; a
failure rolls back that coverage only. Dry-run mode runs exactly the same
conversion inside a read-only transaction and only reports.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from coverage_engine.core.exceptions import (
    CoverageFailed,
    CoverageNotFoundError,
    ConcurrentModificationError,
    FatalRunError,
    StoreError,
    TransientStoreError,
)
from coverage_engine.database.models import utcnow
from coverage_engine.repositories.coverage_repository import CoverageRepository, coverage_path
from coverage_engine.repositories.record_store import RecordStore, StoreTransaction
from coverage_engine.schemas.coverage import Coverage, Deductible, Limit
from coverage_engine.services.migration.ordering import order_coverages
from coverage_engine.services.migration.report import (
    CoverageOutcome,
    CoverageState,
    MigrationMode,
    MigrationReport,
    MigrationWarning,
    RunStatus,
    SynthesizedRecord,
)
from coverage_engine.services.parsing.legacy_converter import ConversionWarning, LegacyConverter
from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

RECORD_TIMESTAMPS = {"created_at", "updated_at"}


@dataclass
class CoveragePlan:
    """What migrating one coverage produces."""
    limits: List[Limit] = field(default_factory=list)
    deductibles: List[Deductible] = field(default_factory=list)
    warnings: List[ConversionWarning] = field(default_factory=list)
    # Limits that sub-coverages are checked against
    effective_limits: List[Limit] = field(default_factory=list)
    kept_authored: List[str] = field(default_factory=list)


@dataclass
class _ProductRun:
    """Shared state of the tasks migrating one product."""
    product_id: str
    mode: MigrationMode
    semaphore: asyncio.Semaphore
    cancel_event: asyncio.Event
    done: Dict[str, asyncio.Event]
    effective_limits: Dict[str, List[Limit]] = field(default_factory=dict)
    attempted: int = 0
    # Coverages that failed because the store stayed unreachable through every retry
    store_failures: int = 0


class MigrationService:
    """Runs the legacy-to-typed migration over the catalog."""

    def __init__(
        self,
        store: RecordStore,
        converter: Optional[LegacyConverter] = None,
        concurrency: int = 4,
    ):
        """Initialize the migration engine.

        Args:
            store: Record store client
            converter: Legacy converter carrying the default types
            concurrency: Default number of coverages migrated at once
        """
        self.store = store
        self.converter = converter or LegacyConverter()
        self.concurrency = concurrency

    @classmethod
    def from_settings(cls, store: RecordStore, settings) -> "MigrationService":
        return cls(
            store,
            converter=LegacyConverter.from_settings(settings.migration),
            concurrency=settings.migration.concurrency,
        )

    async def run(
        self,
        mode: MigrationMode,
        product_id: Optional[str] = None,
        concurrency: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MigrationReport:
        """Migrate every product, or only ``product_id``.

        Args:
            mode: ``dry-run`` reports only; ``live`` persists
            product_id: Restrict the run to one product
            concurrency: Worker pool size (defaults to the configured size)
            cancel_event: Set to stop before the next coverage starts

        Returns:
            MigrationReport: Per-coverage outcomes, synthesized records and warnings

        Raises:
            FatalRunError: If the catalog cannot be listed, or every coverage of a
                product fails because the store is unreachable; carries the partial report
            ValueError: If ``concurrency`` is below 1
        """
        mode = MigrationMode(mode)
        pool_size = concurrency if concurrency is not None else self.concurrency
        if pool_size < 1:
            raise ValueError(f"concurrency must be at least 1, got {pool_size}")
        cancel_event = cancel_event or asyncio.Event()
        report = MigrationReport(mode=mode, product_filter=product_id)

        LOGGER.info(
            f"Starting {mode.value} migration",
            extra={"product": product_id, "concurrency": pool_size},
        )

        if product_id:
            product_ids = [product_id]
        else:
            product_ids = await self._list(
                report, lambda txn: CoverageRepository(txn).list_product_ids(), "list products"
            )

        for current_product in product_ids:
            if cancel_event.is_set():
                break
            await self._run_product(report, current_product, mode, pool_size, cancel_event)
            report.totals.products += 1

        if cancel_event.is_set() and (report.totals.not_started or report.totals.products < len(product_ids)):
            status = RunStatus.ABORTED
        elif report.totals.failed:
            status = RunStatus.COMPLETED_WITH_FAILURES
        else:
            status = RunStatus.COMPLETED
        report.finish(status, "run cancelled" if status is RunStatus.ABORTED else None)

        LOGGER.info(report.summary())
        return report

    async def _list(self, report: MigrationReport, fn, description: str):
        try:
            return await self.store.run_transaction(fn, description)
        except StoreError as e:
            LOGGER.error(f"Aborting migration: could not {description}", exc_info=True)
            report.finish(RunStatus.ABORTED, f"could not {description}: {e}")
            raise FatalRunError(f"Migration aborted: could not {description}", report, e) from e

    async def _run_product(
        self,
        report: MigrationReport,
        product_id: str,
        mode: MigrationMode,
        pool_size: int,
        cancel_event: asyncio.Event,
    ) -> None:
        coverages: List[Coverage] = await self._list(
            report,
            lambda txn: CoverageRepository(txn).list_coverages(product_id),
            f"list coverages of {product_id}",
        )
        LOGGER.info(f"Processing product {product_id}", extra={"coverages": len(coverages)})

        ordering = order_coverages(coverages)
        by_id = {coverage.id: coverage for coverage in coverages}
        run = _ProductRun(
            product_id=product_id,
            mode=mode,
            semaphore=asyncio.Semaphore(pool_size),
            cancel_event=cancel_event,
            done={coverage.id: asyncio.Event() for coverage in coverages},
        )

        for coverage_id in ordering.orphans:
            LOGGER.warning(
                f"Coverage {coverage_id} names a missing parent, migrating it as a root",
                extra={"parent": by_id[coverage_id].parent_coverage_id},
            )
        for coverage_id in ordering.cyclic:
            report.add_outcome(
                CoverageOutcome(
                    product_id=product_id,
                    coverage_id=coverage_id,
                    state=CoverageState.FAILED,
                    error="coverage is part of a parentCoverageId cycle",
                )
            )
            run.done[coverage_id].set()

        tasks = [
            asyncio.create_task(self._run_coverage(report, run, by_id[coverage_id]))
            for coverage_id in ordering.order
        ]
        await asyncio.gather(*tasks)

        if run.attempted and run.store_failures == run.attempted:
            message = f"store unreachable: all {run.attempted} coverage(s) of {product_id} failed"
            LOGGER.error(f"Aborting migration: {message}")
            report.finish(RunStatus.ABORTED, message)
            raise FatalRunError(f"Migration aborted: {message}", report)

    async def _run_coverage(self, report: MigrationReport, run: _ProductRun, coverage: Coverage) -> None:
        parent_id = coverage.parent_coverage_id
        try:
            if parent_id in run.done:
                await run.done[parent_id].wait()
            if run.cancel_event.is_set():
                self._record_not_started(report, run, coverage)
                return
            async with run.semaphore:
                # Cancellation is honoured between coverages only
                if run.cancel_event.is_set():
                    self._record_not_started(report, run, coverage)
                    return
                await self._record_coverage(report, run, coverage)
        finally:
            run.done[coverage.id].set()

    async def _record_coverage(self, report: MigrationReport, run: _ProductRun, coverage: Coverage) -> None:
        product_id, coverage_id = run.product_id, coverage.id
        parent_limits = run.effective_limits.get(coverage.parent_coverage_id or "", [])
        LOGGER.debug(f"Coverage {coverage_id}: {CoverageState.CONVERTING.value}")
        run.attempted += 1

        try:
            plan = await self.migrate_coverage(product_id, coverage_id, run.mode, parent_limits)
        except CoverageFailed as e:
            if self._is_store_outage(e.original_error):
                run.store_failures += 1
            LOGGER.error(
                f"Coverage {coverage_id} failed, its changes were rolled back",
                extra={"product": product_id, "error": str(e)},
            )
            report.add_outcome(
                CoverageOutcome(
                    product_id=product_id,
                    coverage_id=coverage_id,
                    state=CoverageState.FAILED,
                    error=str(e),
                )
            )
            self._log_progress(report)
            return

        if plan is None:
            # Already carries the marker: terminal, nothing to do
            run.effective_limits[coverage_id] = await self._existing_limits(product_id, coverage_id)
            report.add_outcome(
                CoverageOutcome(
                    product_id=product_id,
                    coverage_id=coverage_id,
                    state=CoverageState.MIGRATED,
                    skipped=True,
                )
            )
            self._log_progress(report)
            return

        run.effective_limits[coverage_id] = plan.effective_limits
        records = [self._synthesized(product_id, coverage_id, "limit", limit) for limit in plan.limits]
        records += [
            self._synthesized(product_id, coverage_id, "deductible", deductible)
            for deductible in plan.deductibles
        ]
        warnings = [
            MigrationWarning(product_id=product_id, coverage_id=coverage_id, **warning.model_dump())
            for warning in plan.warnings
        ]
        report.add_outcome(
            CoverageOutcome(
                product_id=product_id,
                coverage_id=coverage_id,
                state=CoverageState.MIGRATED,
                limits_created=len(plan.limits),
                deductibles_created=len(plan.deductibles),
                warnings=len(warnings),
                kept_authored=plan.kept_authored,
            ),
            records,
            warnings,
        )
        self._log_progress(report)

    async def migrate_coverage(
        self,
        product_id: str,
        coverage_id: str,
        mode: MigrationMode,
        parent_limits: Optional[List[Limit]] = None,
    ) -> Optional[CoveragePlan]:
        """Convert one coverage; persist it in live mode.

        Returns:
            CoveragePlan, or None if the coverage was already migrated

        Raises:
            CoverageFailed: If the coverage could not be converted or committed
        """
        parent_limits = parent_limits or []

        async def convert(txn: StoreTransaction) -> Optional[CoveragePlan]:
            repo = CoverageRepository(txn)
            coverage = await repo.get_coverage(product_id, coverage_id)
            if coverage is None:
                raise CoverageNotFoundError(coverage_path(product_id, coverage_id))
            if coverage.is_migrated:
                return None

            plan = await self._plan(repo, coverage, parent_limits)
            if mode is MigrationMode.LIVE:
                await self._persist(repo, coverage, plan)
            return plan

        try:
            return await self.store.run_transaction(convert, f"migrate coverage {coverage_id}")
        except Exception as e:
            raise CoverageFailed(product_id, coverage_id, f"{type(e).__name__}: {e}", e) from e

    async def _plan(
        self, repo: CoverageRepository, coverage: Coverage, parent_limits: List[Limit]
    ) -> CoveragePlan:
        product_id, coverage_id = coverage.product_id, coverage.id
        plan = CoveragePlan()

        # Records written through the accessors before the migration reached
        # this coverage are authoritative; their legacy array is not converted
        authored_limits = await repo.list_limits(product_id, coverage_id)
        if authored_limits:
            plan.effective_limits = authored_limits
            plan.kept_authored.extend(f"limits/{limit.id}" for limit in authored_limits)
        else:
            plan.limits, warnings = self.converter.convert_limits(coverage, parent_limits)
            plan.effective_limits = plan.limits
            plan.warnings.extend(warnings)

        authored_deductibles = await repo.list_deductibles(product_id, coverage_id)
        if authored_deductibles:
            plan.kept_authored.extend(f"deductibles/{item.id}" for item in authored_deductibles)
        else:
            plan.deductibles, warnings = self.converter.convert_deductibles(coverage)
            plan.warnings.extend(warnings)

        return plan

    @staticmethod
    async def _persist(repo: CoverageRepository, coverage: Coverage, plan: CoveragePlan) -> None:
        now = utcnow()
        for limit in plan.limits:
            await repo.save_limit(
                coverage.product_id,
                coverage.id,
                limit.model_copy(update={"created_at": now, "updated_at": now}),
            )
        for deductible in plan.deductibles:
            await repo.save_deductible(
                coverage.product_id,
                coverage.id,
                deductible.model_copy(update={"created_at": now, "updated_at": now}),
            )
        await repo.update_coverage(
            coverage.product_id,
            coverage.id,
            {"migratedAt": now.isoformat(), "updatedAt": now.isoformat()},
        )

    async def _existing_limits(self, product_id: str, coverage_id: str) -> List[Limit]:
        try:
            return await self.store.run_transaction(
                lambda txn: CoverageRepository(txn).list_limits(product_id, coverage_id),
                f"list limits of {coverage_id}",
            )
        except StoreError:
            LOGGER.warning(
                f"Could not load limits of migrated coverage {coverage_id}; sublimits below it are unchecked",
                exc_info=True,
            )
            return []

    @staticmethod
    def _synthesized(product_id: str, coverage_id: str, kind: str, record) -> SynthesizedRecord:
        return SynthesizedRecord(
            product_id=product_id,
            coverage_id=coverage_id,
            kind=kind,
            data=record.model_dump(mode="json", by_alias=True, exclude=RECORD_TIMESTAMPS),
        )

    @staticmethod
    def _record_not_started(report: MigrationReport, run: _ProductRun, coverage: Coverage) -> None:
        report.add_outcome(
            CoverageOutcome(
                product_id=run.product_id,
                coverage_id=coverage.id,
                state=CoverageState.LEGACY,
                error="not started: run cancelled",
            )
        )

    @staticmethod
    def _is_store_outage(error: Optional[Exception]) -> bool:
        return isinstance(error, TransientStoreError) and not isinstance(error, ConcurrentModificationError)

    @staticmethod
    def _log_progress(report: MigrationReport) -> None:
        LOGGER.info(f"Progress: {report.summary()}")
