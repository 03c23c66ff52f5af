"""Tests for coverage rollback."""

from decimal import Decimal

import pytest

from coverage_engine.core.exceptions import (
    CoverageNotFoundError,
    RollbackNotConfirmedError,
    RollbackUnsafeError,
)
from coverage_engine.repositories.coverage_repository import coverage_path, limits_collection
from coverage_engine.schemas.coverage import Limit
from coverage_engine.services.compatibility.compatibility_service import RepresentationState
from coverage_engine.services.migration.report import MigrationMode


class TestRollback:
    """Rolling a migrated coverage back to its legacy arrays."""

    @pytest.mark.asyncio
    async def test_live_rollback_restores_legacy_reads(self, migration, rollback_service, compat, seed, store):
        await seed("p1", "c1", legacy_limits=["$100,000", "$250,000"], legacy_deductibles=["$1,000"])
        await migration.run(MigrationMode.LIVE)

        report = await rollback_service.rollback("p1", "c1", dry_run=False, confirm=True, reason="bad data")

        assert report.was_migrated and report.cleared_marker
        assert report.deleted_limits == ["limit-000", "limit-001"]
        assert report.deleted_deductibles == ["deductible-000"]
        assert report.legacy_limits == ["$100,000", "$250,000"]
        assert await store.list_collection(limits_collection("p1", "c1")) == []
        body = (await store.get(coverage_path("p1", "c1"))).data
        assert body["migratedAt"] is None
        assert body["legacyLimits"] == ["$100,000", "$250,000"]

        view = await compat.read_limit_view("p1", "c1")
        assert view.state is RepresentationState.LEGACY
        assert [limit.amount for limit in view.items] == [Decimal("100000"), Decimal("250000")]

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self, migration, rollback_service, seed, store):
        await seed("p1", "c1", legacy_limits=["$100,000"])
        await migration.run(MigrationMode.LIVE)

        report = await rollback_service.rollback("p1", "c1")

        assert report.dry_run
        assert report.deleted_limits == ["limit-000"]
        assert len(await store.list_collection(limits_collection("p1", "c1"))) == 1
        assert (await store.get(coverage_path("p1", "c1"))).data["migratedAt"] is not None

    @pytest.mark.asyncio
    async def test_live_rollback_requires_confirmation(self, rollback_service, seed):
        await seed("p1", "c1")

        with pytest.raises(RollbackNotConfirmedError):
            await rollback_service.rollback("p1", "c1", dry_run=False)

    @pytest.mark.asyncio
    async def test_authored_records_fall_back_to_dual_written_entries(
        self, migration, rollback_service, compat, seed, store
    ):
        await seed("p1", "c1", legacy_limits=["$100,000"])
        await migration.run(MigrationMode.LIVE)
        written = await compat.write_limit("p1", "c1", Limit(amount=Decimal("5000")))

        report = await rollback_service.rollback("p1", "c1", dry_run=False, confirm=True)

        assert report.deleted_limits == ["limit-000", written.id]
        assert report.authored_limits == [written.id]
        assert await store.list_collection(limits_collection("p1", "c1")) == []

        view = await compat.read_limit_view("p1", "c1")
        assert view.state is RepresentationState.LEGACY
        assert [limit.amount for limit in view.items] == [Decimal("100000"), Decimal("5000")]

    @pytest.mark.asyncio
    async def test_authored_values_missing_from_legacy_arrays_block_rollback(
        self, migration, rollback_service, compat_no_dual_write, seed, store
    ):
        await seed("p1", "c1", legacy_limits=["$100,000"])
        await migration.run(MigrationMode.LIVE)
        written = await compat_no_dual_write.write_limit("p1", "c1", Limit(amount=Decimal("5000")))

        with pytest.raises(RollbackUnsafeError) as exc_info:
            await rollback_service.rollback("p1", "c1", dry_run=False, confirm=True)

        assert exc_info.value.limits == [written.id]
        assert len(await store.list_collection(limits_collection("p1", "c1"))) == 2
        assert (await store.get(coverage_path("p1", "c1"))).data["migratedAt"] is not None

    @pytest.mark.asyncio
    async def test_written_but_unmigrated_coverage_is_left_alone(self, rollback_service, compat, seed, store):
        await seed("p1", "c1", legacy_limits=["$100,000", "$250,000"])
        await compat.write_limit("p1", "c1", Limit(id="x", amount=Decimal("50000")))

        report = await rollback_service.rollback("p1", "c1", dry_run=False, confirm=True)

        assert not report.was_migrated
        assert report.deleted_limits == []
        view = await compat.read_limit_view("p1", "c1")
        assert view.state is RepresentationState.DUAL
        assert [limit.amount for limit in view.items] == [
            Decimal("100000"),
            Decimal("250000"),
            Decimal("50000"),
        ]

    @pytest.mark.asyncio
    async def test_rolled_back_coverage_migrates_again(self, migration, rollback_service, seed, store):
        await seed("p1", "c1", legacy_limits=["$100,000"])
        await migration.run(MigrationMode.LIVE)
        await rollback_service.rollback("p1", "c1", dry_run=False, confirm=True)

        report = await migration.run(MigrationMode.LIVE)

        assert report.totals.migrated == 1
        assert len(await store.list_collection(limits_collection("p1", "c1"))) == 1

    @pytest.mark.asyncio
    async def test_unmigrated_coverage(self, rollback_service, seed):
        await seed("p1", "c1", legacy_limits=["$1"])

        report = await rollback_service.rollback("p1", "c1", dry_run=False, confirm=True)

        assert not report.was_migrated
        assert not report.cleared_marker
        assert report.deleted_limits == []

    @pytest.mark.asyncio
    async def test_missing_coverage(self, rollback_service, seed):
        await seed("p1", "c1")

        with pytest.raises(CoverageNotFoundError):
            await rollback_service.rollback("p1", "missing")
