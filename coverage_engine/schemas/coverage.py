"""Pydantic schemas for coverages and their limit/deductible child records.

Field names are snake_case in Python and camelCase in the record store, so
documents written by the catalog UI (``legacyLimits``, ``migratedAt``, ...)
load without a translation layer.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class LimitType(str, Enum):
    """How a limit caps exposure."""
    PER_OCCURRENCE = "perOccurrence"
    AGGREGATE = "aggregate"
    PER_PERSON = "perPerson"
    PER_LOCATION = "perLocation"
    SUBLIMIT = "sublimit"
    COMBINED = "combined"
    SPLIT = "split"

    @property
    def display_name(self) -> str:
        return LIMIT_TYPE_DISPLAY_NAMES[self]


class DeductibleType(str, Enum):
    """How a deductible is retained by the insured."""
    FLAT = "flat"
    PERCENTAGE = "percentage"
    FRANCHISE = "franchise"
    DISAPPEARING = "disappearing"
    PER_OCCURRENCE = "perOccurrence"
    AGGREGATE = "aggregate"
    WAITING = "waiting"

    @property
    def uses_percentage(self) -> bool:
        """Percentage deductibles carry ``percentage``; every other type carries ``amount``."""
        return self is DeductibleType.PERCENTAGE

    @property
    def display_name(self) -> str:
        return DEDUCTIBLE_TYPE_DISPLAY_NAMES[self]


LIMIT_TYPE_DISPLAY_NAMES = {
    LimitType.PER_OCCURRENCE: "Per Occurrence",
    LimitType.AGGREGATE: "Aggregate",
    LimitType.PER_PERSON: "Per Person",
    LimitType.PER_LOCATION: "Per Location",
    LimitType.SUBLIMIT: "Sublimit",
    LimitType.COMBINED: "Combined Single Limit",
    LimitType.SPLIT: "Split Limit",
}

DEDUCTIBLE_TYPE_DISPLAY_NAMES = {
    DeductibleType.FLAT: "Flat Amount",
    DeductibleType.PERCENTAGE: "Percentage",
    DeductibleType.FRANCHISE: "Franchise",
    DeductibleType.DISAPPEARING: "Disappearing",
    DeductibleType.PER_OCCURRENCE: "Per Occurrence",
    DeductibleType.AGGREGATE: "Aggregate",
    DeductibleType.WAITING: "Waiting Period",
}


class ExclusionType(str, Enum):
    NAMED = "named"
    GENERAL = "general"
    CONDITIONAL = "conditional"
    ABSOLUTE = "absolute"
    BUYBACK = "buyback"


class ConditionType(str, Enum):
    ELIGIBILITY = "eligibility"
    CLAIMS = "claims"
    DUTIES = "duties"
    GENERAL = "general"
    SUSPENSION = "suspension"
    CANCELLATION = "cancellation"


class RecordSource(str, Enum):
    """Who created a child record."""
    AUTHORING = "authoring"
    MIGRATION = "migration"


class LegacyField(str, Enum):
    """Legacy string-array fields on a coverage document."""
    LIMITS = "legacyLimits"
    DEDUCTIBLES = "legacyDeductibles"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class CatalogModel(BaseModel):
    """Base model for record-store documents with camelCase persistence."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the JSON shape stored in the record store.

        ``id`` is the last path segment, so it is not duplicated into the body.
        """
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})


class MigratedFrom(CatalogModel):
    """Provenance of a record synthesized from a legacy array entry."""
    field: LegacyField
    entry_index: int
    raw_value: str


class Limit(CatalogModel):
    """Coverage limit child record (``limits/{limitId}``)."""
    id: Optional[str] = None
    product_id: Optional[str] = None
    coverage_id: Optional[str] = None

    limit_type: LimitType = LimitType.PER_OCCURRENCE
    amount: Optional[Decimal] = None
    display_value: str = ""

    is_default: bool = False
    is_required: bool = False
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    parent_limit_id: Optional[str] = None

    description: Optional[str] = None
    applies_to: List[str] = Field(default_factory=list)

    source: RecordSource = RecordSource.AUTHORING
    migrated_from: Optional[MigratedFrom] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DisappearingStep(CatalogModel):
    loss_amount: Decimal
    deductible_amount: Decimal


class Deductible(CatalogModel):
    """Coverage deductible child record (``deductibles/{deductibleId}``)."""
    id: Optional[str] = None
    product_id: Optional[str] = None
    coverage_id: Optional[str] = None

    deductible_type: DeductibleType = DeductibleType.FLAT
    amount: Optional[Decimal] = None  # days for waiting-period deductibles
    percentage: Optional[Decimal] = None  # 0-100 scale, 2 means 2%
    display_value: str = ""

    is_default: bool = False
    is_required: bool = False
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    minimum_retained: Optional[Decimal] = None
    maximum_retained: Optional[Decimal] = None
    disappearing_schedule: List[DisappearingStep] = Field(default_factory=list)

    description: Optional[str] = None
    applies_to: List[str] = Field(default_factory=list)

    source: RecordSource = RecordSource.AUTHORING
    migrated_from: Optional[MigratedFrom] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Exclusion(CatalogModel):
    name: str = ""
    description: str = ""
    type: ExclusionType = ExclusionType.GENERAL
    reference: Optional[str] = None
    form_id: Optional[str] = None
    is_standard: Optional[bool] = None
    is_absolute: Optional[bool] = None
    buyback_endorsement_id: Optional[str] = None
    applies_to: List[str] = Field(default_factory=list)


class Condition(CatalogModel):
    name: str = ""
    description: str = ""
    type: ConditionType = ConditionType.GENERAL
    is_required: Optional[bool] = None
    is_suspending: Optional[bool] = None
    reference: Optional[str] = None
    form_id: Optional[str] = None


class Coverage(CatalogModel):
    """Coverage document (``products/{productId}/coverages/{coverageId}``).

    Unknown fields are kept so a coverage can be round-tripped without losing
    attributes owned by other parts of the catalog.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = None
    product_id: Optional[str] = None
    name: Optional[str] = None
    coverage_code: Optional[str] = None
    parent_coverage_id: Optional[str] = None

    legacy_limits: List[str] = Field(default_factory=list)
    legacy_deductibles: List[str] = Field(default_factory=list)
    migrated_at: Optional[datetime] = None

    exclusions: List[Exclusion] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)
    required_coverages: List[str] = Field(default_factory=list)
    incompatible_coverages: List[str] = Field(default_factory=list)

    coinsurance_percentage: Optional[Decimal] = None
    waiting_period: Optional[int] = None
    claims_reporting_period: Optional[int] = None
    base_premium: Optional[Decimal] = None

    @field_validator(
        "legacy_limits",
        "legacy_deductibles",
        "exclusions",
        "conditions",
        "required_coverages",
        "incompatible_coverages",
        mode="before",
    )
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("legacy_limits", "legacy_deductibles", mode="before")
    @classmethod
    def _stringify_entries(cls, value: Any) -> Any:
        # Hand-entered arrays sometimes hold bare numbers or nulls; keep the index
        if isinstance(value, list):
            return ["" if entry is None else str(entry) for entry in value]
        return value

    @property
    def is_migrated(self) -> bool:
        return self.migrated_at is not None


class Product(CatalogModel):
    id: Optional[str] = None
    name: Optional[str] = None


class ValidationIssue(BaseModel):
    """One failing (or advisory) validation rule."""
    field: str
    rule: str
    message: str
    severity: Severity = Severity.ERROR


class ValidationResult(BaseModel):
    """Outcome of validating one entity; ``errors`` empty means valid."""
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, field: str, rule: str, message: str, severity: Severity = Severity.ERROR) -> None:
        issue = ValidationIssue(field=field, rule=rule, message=message, severity=severity)
        if severity is Severity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def format(self) -> str:
        """Human-readable summary of errors and warnings."""
        lines: List[str] = []
        if self.errors:
            lines.append("Errors:")
            lines.extend(f"  - {issue.message}" for issue in self.errors)
        if self.warnings:
            if lines:
                lines.append("")
            lines.append("Warnings:")
            lines.extend(f"  - {issue.message}" for issue in self.warnings)
        return "\n".join(lines)
