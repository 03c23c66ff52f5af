"""Migration run report."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from coverage_engine.database.models import utcnow
from coverage_engine.schemas.coverage import LegacyField


class MigrationMode(str, Enum):
    DRY_RUN = "dry-run"
    LIVE = "live"


class CoverageState(str, Enum):
    """Per-coverage migration state machine: legacy -> converting -> migrated | failed."""
    LEGACY = "legacy"
    CONVERTING = "converting"
    MIGRATED = "migrated"
    FAILED = "failed"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    ABORTED = "aborted"


EXIT_CODES = {
    RunStatus.COMPLETED: 0,
    RunStatus.COMPLETED_WITH_FAILURES: 1,
    RunStatus.ABORTED: 2,
}


class MigrationWarning(BaseModel):
    """A legacy entry that was not converted, and why."""
    product_id: str
    coverage_id: str
    field: LegacyField
    entry_index: int
    raw_value: str
    reason: str
    kind: str = "parse"


class SynthesizedRecord(BaseModel):
    """A limit or deductible produced from a legacy entry (timestamps excluded)."""
    product_id: str
    coverage_id: str
    kind: str  # limit | deductible
    data: Dict[str, Any]


class CoverageOutcome(BaseModel):
    product_id: str
    coverage_id: str
    state: CoverageState
    skipped: bool = False
    limits_created: int = 0
    deductibles_created: int = 0
    warnings: int = 0
    kept_authored: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class MigrationTotals(BaseModel):
    products: int = 0
    coverages: int = 0
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    not_started: int = 0
    limits_created: int = 0
    deductibles_created: int = 0
    warnings: int = 0


class MigrationReport(BaseModel):
    """Everything a run did (or, in dry-run mode, would have done)."""
    mode: MigrationMode
    status: Optional[RunStatus] = None
    product_filter: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    totals: MigrationTotals = Field(default_factory=MigrationTotals)
    outcomes: List[CoverageOutcome] = Field(default_factory=list)
    records: List[SynthesizedRecord] = Field(default_factory=list)
    warnings: List[MigrationWarning] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status or RunStatus.ABORTED]

    def add_outcome(
        self,
        outcome: CoverageOutcome,
        records: Optional[List[SynthesizedRecord]] = None,
        warnings: Optional[List[MigrationWarning]] = None,
    ) -> None:
        records = records or []
        warnings = warnings or []
        self.outcomes.append(outcome)
        self.records.extend(records)
        self.warnings.extend(warnings)

        totals = self.totals
        totals.coverages += 1
        if outcome.state is CoverageState.FAILED:
            totals.failed += 1
        elif outcome.skipped:
            totals.skipped += 1
        elif outcome.state is CoverageState.MIGRATED:
            totals.migrated += 1
        else:
            totals.not_started += 1
        totals.limits_created += outcome.limits_created
        totals.deductibles_created += outcome.deductibles_created
        totals.warnings += len(warnings)

    def finish(self, status: RunStatus, error: Optional[str] = None) -> "MigrationReport":
        """Close the report; sorts entries so concurrent runs report identically."""
        self.status = status
        self.error = error
        self.finished_at = utcnow()
        self.outcomes.sort(key=lambda o: (o.product_id, o.coverage_id))
        self.records.sort(key=lambda r: (r.product_id, r.coverage_id, r.kind, str(r.data.get("id"))))
        self.warnings.sort(key=lambda w: (w.product_id, w.coverage_id, w.field.value, w.entry_index))
        return self

    def summary(self) -> str:
        totals = self.totals
        return (
            f"{self.mode.value} {self.status.value if self.status else 'running'}: "
            f"{totals.coverages} coverages, {totals.migrated} migrated, {totals.skipped} skipped, "
            f"{totals.failed} failed, {totals.limits_created} limits, "
            f"{totals.deductibles_created} deductibles, {totals.warnings} warnings"
        )
