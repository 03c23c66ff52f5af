"""Compatibility accessors for coverage limits and deductibles.

During the transition window a coverage attribute can live in the legacy
string array, in typed child records, or in both. Application code reads and
writes through this service and never looks at either representation
directly:

- reads resolve the representation state once per attribute and pick the
  authoritative source;
- writes validate first, persist the typed record and, with dual-write on,
  re-render the legacy array from the current records in the same
  transaction.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Sequence, Set, TypeVar, Union

from coverage_engine.core.exceptions import ValidationError
from coverage_engine.database.models import utcnow
from coverage_engine.repositories.coverage_repository import CoverageRepository
from coverage_engine.repositories.record_store import RecordStore, StoreTransaction
from coverage_engine.schemas.coverage import (
    Coverage,
    Deductible,
    LegacyField,
    Limit,
    LimitType,
    RecordSource,
    ValidationResult,
)
from coverage_engine.services.parsing.legacy_converter import ConversionWarning, LegacyConverter
from coverage_engine.services.parsing.value_parser import ValueParser
from coverage_engine.services.validation.validation_service import ValidationService
from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

RecordType = TypeVar("RecordType", Limit, Deductible)


class RepresentationState(str, Enum):
    """Where an attribute's values currently live."""
    LEGACY = "legacy"  # legacy array only
    DUAL = "dual"  # typed records authoritative, legacy array still populated
    MIGRATED = "migrated"  # typed records only


def resolve_state(coverage: Coverage, legacy_entries: Sequence[str], has_records: bool) -> RepresentationState:
    """Resolve the representation state of one attribute.

    Typed records win as soon as they exist or the coverage carries the
    migration marker, so a migrated coverage whose records were all deleted
    reads as empty instead of falling back to stale legacy strings.
    """
    if coverage.migrated_at is None and not has_records:
        return RepresentationState.LEGACY
    return RepresentationState.DUAL if legacy_entries else RepresentationState.MIGRATED


@dataclass
class AttributeView(Generic[RecordType]):
    """Tagged result of a read: the state and the records it resolved to."""
    state: RepresentationState
    items: List[RecordType] = field(default_factory=list)
    warnings: List[ConversionWarning] = field(default_factory=list)

    @property
    def source(self) -> str:
        return "legacy" if self.state is RepresentationState.LEGACY else "records"


@dataclass
class _AttributeOps:
    """Per-attribute plumbing shared by the limit and deductible accessors."""
    legacy_field: LegacyField
    label: str
    list_records: Any
    save_record: Any
    delete_record: Any
    render: Any


class CompatibilityService:
    """Dual-read / dual-write access to coverage attributes."""

    def __init__(
        self,
        store: RecordStore,
        validator: Optional[ValidationService] = None,
        parser: Optional[ValueParser] = None,
        converter: Optional[LegacyConverter] = None,
        dual_write: bool = True,
    ):
        """Initialize the accessors.

        Args:
            store: Record store client
            validator: Validation engine (a default one is built if omitted)
            parser: Value parser used for rendering legacy strings
            converter: Converter used to read legacy arrays
            dual_write: Re-render legacy arrays on every write
        """
        self.store = store
        self.parser = parser or ValueParser()
        self.validator = validator or ValidationService(self.parser)
        self.converter = converter or LegacyConverter(self.parser, self.validator)
        self.dual_write = dual_write

    # Reads

    async def read_limits(self, product_id: str, coverage_id: str) -> List[Limit]:
        return (await self.read_limit_view(product_id, coverage_id)).items

    async def read_deductibles(self, product_id: str, coverage_id: str) -> List[Deductible]:
        return (await self.read_deductible_view(product_id, coverage_id)).items

    async def read_limit_view(self, product_id: str, coverage_id: str) -> AttributeView[Limit]:
        """Read a coverage's limits from whichever representation is authoritative.

        Raises:
            CoverageNotFoundError: If the coverage does not exist
        """

        async def load(txn: StoreTransaction) -> AttributeView[Limit]:
            repo = CoverageRepository(txn)
            coverage = await repo.require_coverage(product_id, coverage_id)
            return await self._limit_view(repo, coverage, set())

        view = await self.store.run_transaction(load, f"read limits of {coverage_id}")
        self._log_skipped(coverage_id, view)
        return view

    async def read_deductible_view(self, product_id: str, coverage_id: str) -> AttributeView[Deductible]:
        """Read a coverage's deductibles from whichever representation is authoritative.

        Raises:
            CoverageNotFoundError: If the coverage does not exist
        """

        async def load(txn: StoreTransaction) -> AttributeView[Deductible]:
            repo = CoverageRepository(txn)
            coverage = await repo.require_coverage(product_id, coverage_id)
            records = await repo.list_deductibles(product_id, coverage_id)
            state = resolve_state(coverage, coverage.legacy_deductibles, bool(records))
            if state is not RepresentationState.LEGACY:
                return AttributeView(state=state, items=records)
            items, warnings = self.converter.convert_deductibles(coverage)
            return AttributeView(state=state, items=items, warnings=warnings)

        view = await self.store.run_transaction(load, f"read deductibles of {coverage_id}")
        self._log_skipped(coverage_id, view)
        return view

    async def _limit_view(
        self, repo: CoverageRepository, coverage: Coverage, visited: Set[str]
    ) -> AttributeView[Limit]:
        records = await repo.list_limits(coverage.product_id, coverage.id)
        state = resolve_state(coverage, coverage.legacy_limits, bool(records))
        if state is not RepresentationState.LEGACY:
            return AttributeView(state=state, items=records)
        parent_limits = await self._parent_limits(repo, coverage, visited)
        items, warnings = self.converter.convert_limits(coverage, parent_limits)
        return AttributeView(state=state, items=items, warnings=warnings)

    async def _parent_limits(
        self, repo: CoverageRepository, coverage: Coverage, visited: Set[str]
    ) -> List[Limit]:
        """Effective limits of the parent coverage, for sublimit checks."""
        parent_id = coverage.parent_coverage_id
        visited = visited | {coverage.id}
        if not parent_id or parent_id in visited:
            return []
        parent = await repo.get_coverage(coverage.product_id, parent_id)
        if parent is None:
            return []
        return (await self._limit_view(repo, parent, visited)).items

    # Writes

    async def write_limit(self, product_id: str, coverage_id: str, limit: Limit) -> Limit:
        """Create or replace a limit.

        Raises:
            ValidationError: If the limit breaks a validation rule; nothing is written
            CoverageNotFoundError: If the coverage does not exist
        """

        async def apply(txn: StoreTransaction) -> Limit:
            repo = CoverageRepository(txn)
            coverage = await repo.require_coverage(product_id, coverage_id)
            view = await self._limit_view(repo, coverage, set())
            record = self._prepare(limit, product_id, coverage_id, view.items)
            if record.limit_type is not LimitType.SPLIT and record.amount is not None:
                record.display_value = self.parser.render_limit(record)
            siblings = [item for item in view.items if item.id != record.id]
            parent_limits = await self._parent_limits(repo, coverage, set())

            result = self.validator.validate_limit(record, siblings, parent_limits)
            self._raise_if_invalid("limit", record.id, result)

            await self._persist(repo, self._limit_ops(repo), coverage, view, record)
            return record

        return await self.store.run_transaction(apply, f"write limit on {coverage_id}")

    async def write_deductible(self, product_id: str, coverage_id: str, deductible: Deductible) -> Deductible:
        """Create or replace a deductible.

        Raises:
            ValidationError: If the deductible breaks a validation rule; nothing is written
            CoverageNotFoundError: If the coverage does not exist
        """

        async def apply(txn: StoreTransaction) -> Deductible:
            repo = CoverageRepository(txn)
            coverage = await repo.require_coverage(product_id, coverage_id)
            view = await self._deductible_view(repo, coverage)
            record = self._prepare(deductible, product_id, coverage_id, view.items)
            if record.amount is not None or record.percentage is not None:
                record.display_value = self.parser.render_deductible(record)
            siblings = [item for item in view.items if item.id != record.id]

            result = self.validator.validate_deductible(record, siblings)
            self._raise_if_invalid("deductible", record.id, result)

            await self._persist(repo, self._deductible_ops(repo), coverage, view, record)
            return record

        return await self.store.run_transaction(apply, f"write deductible on {coverage_id}")

    async def delete_limit(self, product_id: str, coverage_id: str, limit_id: str) -> bool:
        """Delete a limit; returns False if the coverage has no such limit."""

        async def apply(txn: StoreTransaction) -> bool:
            repo = CoverageRepository(txn)
            coverage = await repo.require_coverage(product_id, coverage_id)
            view = await self._limit_view(repo, coverage, set())
            return await self._remove(repo, self._limit_ops(repo), coverage, view, limit_id)

        return await self.store.run_transaction(apply, f"delete limit {limit_id}")

    async def delete_deductible(self, product_id: str, coverage_id: str, deductible_id: str) -> bool:
        """Delete a deductible; returns False if the coverage has no such deductible."""

        async def apply(txn: StoreTransaction) -> bool:
            repo = CoverageRepository(txn)
            coverage = await repo.require_coverage(product_id, coverage_id)
            view = await self._deductible_view(repo, coverage)
            return await self._remove(repo, self._deductible_ops(repo), coverage, view, deductible_id)

        return await self.store.run_transaction(apply, f"delete deductible {deductible_id}")

    async def _deductible_view(self, repo: CoverageRepository, coverage: Coverage) -> AttributeView[Deductible]:
        records = await repo.list_deductibles(coverage.product_id, coverage.id)
        state = resolve_state(coverage, coverage.legacy_deductibles, bool(records))
        if state is not RepresentationState.LEGACY:
            return AttributeView(state=state, items=records)
        items, warnings = self.converter.convert_deductibles(coverage)
        return AttributeView(state=state, items=items, warnings=warnings)

    def _limit_ops(self, repo: CoverageRepository) -> _AttributeOps:
        return _AttributeOps(
            legacy_field=LegacyField.LIMITS,
            label="limit",
            list_records=repo.list_limits,
            save_record=repo.save_limit,
            delete_record=repo.delete_limit,
            render=self.parser.render_limit,
        )

    def _deductible_ops(self, repo: CoverageRepository) -> _AttributeOps:
        return _AttributeOps(
            legacy_field=LegacyField.DEDUCTIBLES,
            label="deductible",
            list_records=repo.list_deductibles,
            save_record=repo.save_deductible,
            delete_record=repo.delete_deductible,
            render=self.parser.render_deductible,
        )

    def _prepare(
        self,
        record: RecordType,
        product_id: str,
        coverage_id: str,
        current: Sequence[RecordType],
    ) -> RecordType:
        prepared = record.model_copy(deep=True)
        prepared.id = prepared.id or uuid.uuid4().hex
        prepared.product_id = product_id
        prepared.coverage_id = coverage_id
        # A record written through the accessors is owned by its author from now on
        prepared.source = RecordSource.AUTHORING

        now = utcnow()
        existing = next((item for item in current if item.id == prepared.id), None)
        prepared.created_at = (existing.created_at if existing else None) or now
        prepared.updated_at = now
        return prepared

    async def _persist(
        self,
        repo: CoverageRepository,
        ops: _AttributeOps,
        coverage: Coverage,
        view: AttributeView,
        record: Union[Limit, Deductible],
    ) -> None:
        product_id, coverage_id = coverage.product_id, coverage.id
        await self._materialize(ops, coverage, view, skip_id=record.id)
        await ops.save_record(product_id, coverage_id, record)
        await self._touch_coverage(repo, ops, coverage)
        LOGGER.info(
            f"Saved {ops.label} {record.id} on {product_id}/{coverage_id}",
            extra={"state": view.state.value, "dual_write": self.dual_write},
        )

    async def _remove(
        self,
        repo: CoverageRepository,
        ops: _AttributeOps,
        coverage: Coverage,
        view: AttributeView,
        record_id: str,
    ) -> bool:
        if not any(item.id == record_id for item in view.items):
            return False
        await self._materialize(ops, coverage, view, skip_id=record_id)
        await ops.delete_record(coverage.product_id, coverage.id, record_id)
        await self._touch_coverage(repo, ops, coverage)
        LOGGER.info(f"Deleted {ops.label} {record_id} on {coverage.product_id}/{coverage.id}")
        return True

    async def _materialize(
        self, ops: _AttributeOps, coverage: Coverage, view: AttributeView, skip_id: Optional[str]
    ) -> None:
        """Persist records parsed from a legacy attribute before its first typed write."""
        if view.state is not RepresentationState.LEGACY:
            return
        now = utcnow()
        for item in view.items:
            if item.id == skip_id:
                continue
            item.source = RecordSource.AUTHORING
            item.created_at = item.updated_at = now
            await ops.save_record(coverage.product_id, coverage.id, item)
        if view.items:
            LOGGER.info(
                f"Materialized {len(view.items)} legacy {ops.label}(s) on {coverage.product_id}/{coverage.id}"
            )

    async def _touch_coverage(self, repo: CoverageRepository, ops: _AttributeOps, coverage: Coverage) -> None:
        # Always bump the coverage so concurrent writers to it conflict and retry
        fields: Dict[str, Any] = {"updatedAt": utcnow().isoformat()}
        if self.dual_write:
            records = await ops.list_records(coverage.product_id, coverage.id)
            fields[ops.legacy_field.value] = self.render_legacy(records, ops.render)
        await repo.update_coverage(coverage.product_id, coverage.id, fields)

    @staticmethod
    def render_legacy(records: Sequence[Union[Limit, Deductible]], render) -> List[str]:
        """Render records into a legacy array, default first."""
        ordered = sorted(records, key=lambda record: not record.is_default)
        rendered = [render(record) for record in ordered]
        return [value for value in rendered if value]

    @staticmethod
    def _raise_if_invalid(kind: str, record_id: Optional[str], result: ValidationResult) -> None:
        if result.is_valid:
            return
        LOGGER.warning(
            f"Rejected {kind} {record_id}",
            extra={"rules": [issue.rule for issue in result.errors]},
        )
        raise ValidationError(
            f"Invalid {kind}: " + "; ".join(issue.message for issue in result.errors),
            result.errors,
        )

    # Validation and status

    async def validate(
        self,
        entity: Union[Limit, Deductible, Coverage],
        product_id: Optional[str] = None,
        coverage_id: Optional[str] = None,
    ) -> ValidationResult:
        """Validate an entity without writing it.

        When the owning coverage is given, the entity is checked against its
        current siblings (and, for a coverage, against the coverages it
        references) exactly as a write would.
        """
        if product_id is None or coverage_id is None:
            return self.validator.validate(entity)

        async def load(txn: StoreTransaction) -> ValidationResult:
            repo = CoverageRepository(txn)
            if isinstance(entity, Coverage):
                referenced = set(entity.required_coverages) | set(entity.incompatible_coverages)
                related: Dict[str, Coverage] = {}
                for other_id in sorted(referenced):
                    other = await repo.get_coverage(product_id, other_id)
                    if other is not None:
                        related[other_id] = other
                return self.validator.validate_coverage(entity, related)

            coverage = await repo.require_coverage(product_id, coverage_id)
            if isinstance(entity, Limit):
                view = await self._limit_view(repo, coverage, set())
                siblings = [item for item in view.items if item.id != entity.id]
                parent_limits = await self._parent_limits(repo, coverage, set())
                return self.validator.validate_limit(entity, siblings, parent_limits)
            view = await self._deductible_view(repo, coverage)
            siblings = [item for item in view.items if item.id != entity.id]
            return self.validator.validate(entity, siblings)

        return await self.store.run_transaction(load, f"validate against {coverage_id}")

    async def migration_status(self, product_id: str) -> Dict[str, int]:
        """Count how many of a product's coverages are on typed records."""

        async def load(txn: StoreTransaction) -> Dict[str, int]:
            repo = CoverageRepository(txn)
            coverages = await repo.list_coverages(product_id)
            migrated = 0
            for coverage in coverages:
                if coverage.is_migrated:
                    migrated += 1
                elif await repo.has_limits(product_id, coverage.id):
                    migrated += 1
                elif await repo.has_deductibles(product_id, coverage.id):
                    migrated += 1
            total = len(coverages)
            return {
                "total": total,
                "migrated": migrated,
                "pending": total - migrated,
                "percentage": round(migrated / total * 100) if total else 0,
            }

        return await self.store.run_transaction(load, f"migration status of {product_id}")

    @staticmethod
    def _log_skipped(coverage_id: str, view: AttributeView) -> None:
        for warning in view.warnings:
            LOGGER.warning(
                f"Skipped unparseable {warning.field.value}[{warning.entry_index}] on {coverage_id}",
                extra={"raw_value": warning.raw_value, "reason": warning.reason},
            )
