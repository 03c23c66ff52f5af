"""Validation engine for limits, deductibles and coverages.

Every rule that fails is reported, not just the first one. Errors make a
write invalid; warnings are advisory. The same rules run for accessor writes
and for records synthesized by the migration engine, which records errors as
warnings instead of failing the run.
"""

from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence, Union

from coverage_engine.schemas.coverage import (
    Coverage,
    Deductible,
    DeductibleType,
    Limit,
    LimitType,
    Severity,
    ValidationResult,
)
from coverage_engine.services.parsing.value_parser import ValueParser
from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

UNUSUAL_PERCENTAGE = Decimal(50)
MAX_PERCENTAGE = Decimal(100)

Entity = Union[Limit, Deductible, Coverage]


class ValidationService:
    """Rule-based validation for coverage attributes."""

    def __init__(self, parser: Optional[ValueParser] = None):
        self.parser = parser or ValueParser()

    def validate(
        self,
        entity: Entity,
        siblings: Sequence[Union[Limit, Deductible]] = (),
        parent_limits: Sequence[Limit] = (),
        related: Optional[Mapping[str, Coverage]] = None,
    ) -> ValidationResult:
        """Validate any supported entity.

        Args:
            entity: Limit, Deductible or Coverage to check
            siblings: Other children of the same kind on the same coverage
            parent_limits: Limits of the parent coverage (sublimit checks)
            related: Coverages referenced by a coverage's dependency lists

        Raises:
            TypeError: If the entity type is not supported
        """
        if isinstance(entity, Limit):
            return self.validate_limit(entity, siblings, parent_limits)
        if isinstance(entity, Deductible):
            return self.validate_deductible(entity, siblings)
        if isinstance(entity, Coverage):
            return self.validate_coverage(entity, related)
        raise TypeError(f"Cannot validate {type(entity).__name__}")

    def validate_limit(
        self,
        limit: Limit,
        siblings: Sequence[Limit] = (),
        parent_limits: Sequence[Limit] = (),
    ) -> ValidationResult:
        result = ValidationResult()

        if limit.amount is None:
            result.add("amount", "amount_required", "Limit amount is required")
        elif limit.amount < 0:
            result.add("amount", "amount_negative", "Limit amount cannot be negative")

        self._check_bounds(result, limit.amount, limit.min_amount, limit.max_amount)
        self._check_single_default(result, limit, siblings)

        if limit.parent_limit_id:
            self._check_parent_limit(result, limit, list(siblings) + list(parent_limits))

        if limit.limit_type is not LimitType.SPLIT:
            self._check_display_value(result, limit.display_value, limit.limit_type, limit.amount, None)

        return self._log_result("limit", limit.id, result)

    def validate_deductible(
        self, deductible: Deductible, siblings: Sequence[Deductible] = ()
    ) -> ValidationResult:
        result = ValidationResult()
        deductible_type = deductible.deductible_type

        if deductible_type.uses_percentage:
            if deductible.percentage is None:
                result.add(
                    "percentage",
                    "percentage_required",
                    "Percentage deductibles must set a percentage",
                )
            if deductible.amount is not None:
                result.add(
                    "amount",
                    "amount_and_percentage",
                    "Percentage deductibles cannot also set an amount",
                )
        else:
            if deductible.amount is None:
                result.add("amount", "amount_required", "Deductible amount is required")
            if deductible.percentage is not None:
                result.add(
                    "percentage",
                    "amount_and_percentage",
                    f"{deductible_type.display_name} deductibles cannot set a percentage",
                )

        if deductible.amount is not None and deductible.amount < 0:
            result.add("amount", "amount_negative", "Deductible amount cannot be negative")

        if deductible.percentage is not None:
            if not 0 <= deductible.percentage <= MAX_PERCENTAGE:
                result.add(
                    "percentage",
                    "percentage_out_of_range",
                    "Percentage deductible must be between 0 and 100",
                )
            elif deductible.percentage > UNUSUAL_PERCENTAGE:
                result.add(
                    "percentage",
                    "percentage_unusual",
                    "Percentage deductible above 50% is unusual",
                    Severity.WARNING,
                )

        self._check_retained(result, deductible)
        self._check_bounds(result, deductible.amount, deductible.min_amount, deductible.max_amount)
        self._check_single_default(result, deductible, siblings)

        for index, step in enumerate(deductible.disappearing_schedule):
            if step.loss_amount < 0 or step.deductible_amount < 0:
                result.add(
                    f"disappearingSchedule[{index}]",
                    "schedule_negative",
                    f"Disappearing schedule step {index + 1} cannot be negative",
                )

        self._check_display_value(
            result, deductible.display_value, deductible_type, deductible.amount, deductible.percentage
        )

        return self._log_result("deductible", deductible.id, result)

    def validate_coverage(
        self, coverage: Coverage, related: Optional[Mapping[str, Coverage]] = None
    ) -> ValidationResult:
        result = ValidationResult()

        if not coverage.name or not coverage.name.strip():
            result.add("name", "name_required", "Coverage name is required")
        if not coverage.coverage_code or not coverage.coverage_code.strip():
            result.add(
                "coverageCode",
                "coverage_code_recommended",
                "Coverage code is recommended for easier identification",
                Severity.WARNING,
            )

        if coverage.coinsurance_percentage is not None:
            if not 0 <= coverage.coinsurance_percentage <= MAX_PERCENTAGE:
                result.add(
                    "coinsurancePercentage",
                    "coinsurance_out_of_range",
                    "Coinsurance percentage must be between 0 and 100",
                )
            elif 0 < coverage.coinsurance_percentage < UNUSUAL_PERCENTAGE:
                result.add(
                    "coinsurancePercentage",
                    "coinsurance_unusual",
                    "Coinsurance percentage below 50% is unusual",
                    Severity.WARNING,
                )

        if coverage.waiting_period is not None and coverage.waiting_period < 0:
            result.add("waitingPeriod", "period_negative", "Waiting period cannot be negative")
        if coverage.claims_reporting_period is not None and coverage.claims_reporting_period < 0:
            result.add(
                "claimsReportingPeriod",
                "period_negative",
                "Claims reporting period cannot be negative",
            )
        if coverage.base_premium is not None and coverage.base_premium < 0:
            result.add("basePremium", "premium_negative", "Base premium cannot be negative")

        for index, exclusion in enumerate(coverage.exclusions):
            if not exclusion.name.strip():
                result.add(
                    f"exclusions[{index}].name",
                    "exclusion_name_required",
                    f"Exclusion {index + 1} must have a name",
                )
        for index, condition in enumerate(coverage.conditions):
            if not condition.name.strip():
                result.add(
                    f"conditions[{index}].name",
                    "condition_name_required",
                    f"Condition {index + 1} must have a name",
                )

        self._check_dependencies(result, coverage, related)

        return self._log_result("coverage", coverage.id, result)

    def _check_dependencies(
        self,
        result: ValidationResult,
        coverage: Coverage,
        related: Optional[Mapping[str, Coverage]],
    ) -> None:
        required = set(coverage.required_coverages)
        incompatible = set(coverage.incompatible_coverages)

        for coverage_id in sorted(required & incompatible):
            result.add(
                "incompatibleCoverages",
                "required_and_incompatible",
                f"Coverage {coverage_id} cannot be both required and incompatible",
            )

        if coverage.id and coverage.id in required | incompatible:
            result.add(
                "requiredCoverages" if coverage.id in required else "incompatibleCoverages",
                "self_reference",
                "A coverage cannot depend on itself",
            )

        if related is None:
            return

        # One hop only: a requires b while b excludes a, or the reverse
        for coverage_id in coverage.required_coverages:
            other = related.get(coverage_id)
            if other is None:
                self._unknown_dependency(result, "requiredCoverages", coverage_id)
            elif coverage.id in other.incompatible_coverages:
                result.add(
                    "requiredCoverages",
                    "dependency_contradiction",
                    f"Required coverage {coverage_id} lists this coverage as incompatible",
                )
        for coverage_id in coverage.incompatible_coverages:
            other = related.get(coverage_id)
            if other is None:
                self._unknown_dependency(result, "incompatibleCoverages", coverage_id)
            elif coverage.id in other.required_coverages:
                result.add(
                    "incompatibleCoverages",
                    "dependency_contradiction",
                    f"Incompatible coverage {coverage_id} requires this coverage",
                )

    @staticmethod
    def _unknown_dependency(result: ValidationResult, field: str, coverage_id: str) -> None:
        result.add(
            field,
            "unknown_dependency",
            f"Referenced coverage {coverage_id} does not exist",
            Severity.WARNING,
        )

    @staticmethod
    def _check_bounds(
        result: ValidationResult,
        amount: Optional[Decimal],
        min_amount: Optional[Decimal],
        max_amount: Optional[Decimal],
    ) -> None:
        if min_amount is not None and max_amount is not None and min_amount > max_amount:
            result.add(
                "minAmount",
                "min_exceeds_max",
                "Minimum amount cannot be greater than maximum amount",
            )
        if amount is None:
            return
        if min_amount is not None and amount < min_amount:
            result.add("amount", "below_minimum", "Amount cannot be less than minimum amount")
        if max_amount is not None and amount > max_amount:
            result.add("amount", "above_maximum", "Amount cannot be greater than maximum amount")

    @staticmethod
    def _check_single_default(
        result: ValidationResult,
        record: Union[Limit, Deductible],
        siblings: Iterable[Union[Limit, Deductible]],
    ) -> None:
        if not record.is_default:
            return
        others = [s for s in siblings if s.is_default and (record.id is None or s.id != record.id)]
        if others:
            result.add(
                "isDefault",
                "multiple_defaults",
                f"Only one default is allowed per coverage (already set on {others[0].id})",
            )

    @staticmethod
    def _check_parent_limit(result: ValidationResult, limit: Limit, candidates: Sequence[Limit]) -> None:
        if limit.parent_limit_id == limit.id:
            result.add("parentLimitId", "parent_is_self", "A limit cannot be its own parent")
            return

        parent = next((c for c in candidates if c.id == limit.parent_limit_id), None)
        if parent is None:
            result.add(
                "parentLimitId",
                "parent_missing",
                f"Parent limit {limit.parent_limit_id} does not exist",
            )
            return

        if limit.amount is not None and parent.amount is not None and limit.amount > parent.amount:
            result.add(
                "amount",
                "sublimit_exceeds_parent",
                f"Sublimit amount {limit.amount} exceeds parent limit amount {parent.amount}",
            )

    def _check_retained(self, result: ValidationResult, deductible: Deductible) -> None:
        minimum = deductible.minimum_retained
        maximum = deductible.maximum_retained
        if minimum is None and maximum is None:
            return

        if not deductible.deductible_type.uses_percentage:
            result.add(
                "minimumRetained",
                "retained_not_applicable",
                "Retained bounds only apply to percentage deductibles",
                Severity.WARNING,
            )
        for field, value in (("minimumRetained", minimum), ("maximumRetained", maximum)):
            if value is not None and value < 0:
                result.add(field, "retained_negative", "Retained bounds cannot be negative")
        if minimum is not None and maximum is not None and minimum > maximum:
            result.add(
                "minimumRetained",
                "retained_order",
                "Minimum retained cannot be greater than maximum retained",
            )

    def _check_display_value(
        self,
        result: ValidationResult,
        display_value: str,
        kind: Union[LimitType, DeductibleType],
        amount: Optional[Decimal],
        percentage: Optional[Decimal],
    ) -> None:
        """The display string must parse back to the stored number."""
        if not display_value or not display_value.strip():
            return

        parsed = self.parser.parse(display_value, kind)
        if not parsed.ok:
            result.add(
                "displayValue",
                "display_value_unparseable",
                f"Display value {display_value!r} cannot be parsed: {parsed.reason}",
            )
        elif parsed.amount != amount or parsed.percentage != percentage:
            result.add(
                "displayValue",
                "display_value_mismatch",
                f"Display value {display_value!r} does not match the stored value",
            )

    @staticmethod
    def _log_result(kind: str, entity_id: Optional[str], result: ValidationResult) -> ValidationResult:
        if not result.is_valid:
            LOGGER.debug(
                f"Validation failed for {kind} {entity_id}",
                extra={"rules": [issue.rule for issue in result.errors]},
            )
        return result
