"""Conversion of legacy display-string arrays into typed child records.

Used by the read path (records synthesized on the fly, never persisted),
by accessor writes that materialize a legacy attribute, and by the
migration engine. All three must produce the same records from the same
input, so the conversion lives in one place.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from coverage_engine.schemas.coverage import (
    CatalogModel,
    Coverage,
    Deductible,
    DeductibleType,
    LegacyField,
    Limit,
    LimitType,
    MigratedFrom,
    RecordSource,
)
from coverage_engine.services.parsing.value_parser import ParsedValue, ValueParser, ValueUnit
from coverage_engine.services.validation.validation_service import ValidationService
from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


def synthesized_limit_id(entry_index: int) -> str:
    return f"limit-{entry_index:03d}"


def synthesized_deductible_id(entry_index: int) -> str:
    return f"deductible-{entry_index:03d}"


class ConversionWarning(CatalogModel):
    """A legacy entry that did not produce a record."""
    field: LegacyField
    entry_index: int
    raw_value: str
    reason: str
    kind: str = "parse"  # parse | validation


@dataclass
class ConversionPlan:
    limits: List[Limit] = field(default_factory=list)
    deductibles: List[Deductible] = field(default_factory=list)
    warnings: List[ConversionWarning] = field(default_factory=list)


class LegacyConverter:
    """Turns ``legacyLimits`` / ``legacyDeductibles`` entries into records.

    Each entry is parsed in order. The first entry becomes the default. An
    entry that cannot be parsed, or whose record fails validation, is
    reported as a warning and skipped; conversion of the other entries
    continues.
    """

    def __init__(
        self,
        parser: Optional[ValueParser] = None,
        validator: Optional[ValidationService] = None,
        default_limit_type: LimitType = LimitType.PER_OCCURRENCE,
        default_deductible_type: DeductibleType = DeductibleType.FLAT,
        infer_types: bool = False,
    ):
        self.parser = parser or ValueParser()
        self.validator = validator or ValidationService(self.parser)
        self.default_limit_type = default_limit_type
        self.default_deductible_type = default_deductible_type
        self.infer_types = infer_types

    @classmethod
    def from_settings(cls, migration_settings, parser=None, validator=None) -> "LegacyConverter":
        return cls(
            parser=parser,
            validator=validator,
            default_limit_type=migration_settings.default_limit_type,
            default_deductible_type=migration_settings.default_deductible_type,
            infer_types=migration_settings.infer_types,
        )

    def convert(self, coverage: Coverage, parent_limits: Sequence[Limit] = ()) -> ConversionPlan:
        limits, limit_warnings = self.convert_limits(coverage, parent_limits)
        deductibles, deductible_warnings = self.convert_deductibles(coverage)
        return ConversionPlan(
            limits=limits,
            deductibles=deductibles,
            warnings=limit_warnings + deductible_warnings,
        )

    def convert_limits(
        self, coverage: Coverage, parent_limits: Sequence[Limit] = ()
    ) -> Tuple[List[Limit], List[ConversionWarning]]:
        """Convert ``legacyLimits``.

        On a sub-coverage, an entry typed as a sublimit is attached to the
        parent coverage's default limit and checked against its amount.
        """
        limits: List[Limit] = []
        warnings: List[ConversionWarning] = []
        parent_default = next((limit for limit in parent_limits if limit.is_default), None)

        for index, raw in enumerate(coverage.legacy_limits):
            parsed = self.parser.parse(raw, self.default_limit_type)
            if not parsed.ok:
                warnings.append(self._warning(LegacyField.LIMITS, index, raw, parsed.reason))
                continue

            limit_type = self.default_limit_type
            if self.infer_types:
                limit_type = self.parser.infer_limit_type(raw, self.default_limit_type)

            limit = Limit(
                id=synthesized_limit_id(index),
                product_id=coverage.product_id,
                coverage_id=coverage.id,
                limit_type=limit_type,
                amount=parsed.amount,
                display_value=str(raw).strip(),
                is_default=index == 0,
                source=RecordSource.MIGRATION,
                migrated_from=MigratedFrom(
                    field=LegacyField.LIMITS, entry_index=index, raw_value=raw
                ),
            )
            if limit_type is LimitType.SUBLIMIT and coverage.parent_coverage_id and parent_default:
                limit.parent_limit_id = parent_default.id

            result = self.validator.validate_limit(limit, limits, parent_limits)
            if not result.is_valid:
                warnings.append(
                    self._warning(
                        LegacyField.LIMITS, index, raw, self._describe(result), kind="validation"
                    )
                )
                continue
            limits.append(limit)

        return limits, warnings

    def convert_deductibles(self, coverage: Coverage) -> Tuple[List[Deductible], List[ConversionWarning]]:
        deductibles: List[Deductible] = []
        warnings: List[ConversionWarning] = []

        for index, raw in enumerate(coverage.legacy_deductibles):
            parsed = self.parser.parse(raw, self.default_deductible_type)
            if not parsed.ok:
                warnings.append(self._warning(LegacyField.DEDUCTIBLES, index, raw, parsed.reason))
                continue

            deductible_type = self._deductible_type(raw, parsed)
            deductible = Deductible(
                id=synthesized_deductible_id(index),
                product_id=coverage.product_id,
                coverage_id=coverage.id,
                deductible_type=deductible_type,
                amount=parsed.amount,
                percentage=parsed.percentage,
                display_value=str(raw).strip(),
                is_default=index == 0,
                source=RecordSource.MIGRATION,
                migrated_from=MigratedFrom(
                    field=LegacyField.DEDUCTIBLES, entry_index=index, raw_value=raw
                ),
            )

            result = self.validator.validate_deductible(deductible, deductibles)
            if not result.is_valid:
                warnings.append(
                    self._warning(
                        LegacyField.DEDUCTIBLES, index, raw, self._describe(result), kind="validation"
                    )
                )
                continue
            deductibles.append(deductible)

        return deductibles, warnings

    def _deductible_type(self, raw: str, parsed: ParsedValue) -> DeductibleType:
        # The unit decides for percentages and periods; keywords only refine amounts
        if parsed.unit is ValueUnit.PERCENT:
            return DeductibleType.PERCENTAGE
        if parsed.unit is ValueUnit.DAYS:
            return DeductibleType.WAITING
        if not self.infer_types:
            return self.default_deductible_type
        inferred = self.parser.infer_deductible_type(raw, self.default_deductible_type)
        if inferred in (DeductibleType.PERCENTAGE, DeductibleType.WAITING):
            return self.default_deductible_type
        return inferred

    @staticmethod
    def _describe(result) -> str:
        return "; ".join(issue.message for issue in result.errors)

    @staticmethod
    def _warning(
        legacy_field: LegacyField, index: int, raw: str, reason: Optional[str], kind: str = "parse"
    ) -> ConversionWarning:
        LOGGER.debug(
            f"Skipping {legacy_field.value}[{index}]",
            extra={"raw_value": raw, "reason": reason, "kind": kind},
        )
        return ConversionWarning(
            field=legacy_field,
            entry_index=index,
            raw_value=str(raw),
            reason=reason or "unparseable value",
            kind=kind,
        )
