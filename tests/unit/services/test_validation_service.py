"""Unit tests for limit, deductible and coverage validation."""

from decimal import Decimal

import pytest

from coverage_engine.schemas.coverage import (
    Condition,
    Coverage,
    Deductible,
    DeductibleType,
    DisappearingStep,
    Exclusion,
    Limit,
    LimitType,
)
from coverage_engine.services.validation.validation_service import ValidationService


def rules(result):
    return {issue.rule for issue in result.errors}


def warning_rules(result):
    return {issue.rule for issue in result.warnings}


class TestLimitValidation:
    """Tests for limit rules."""

    def test_valid_limit(self, validator: ValidationService):
        limit = Limit(id="l1", amount=Decimal("1000000"), display_value="$1,000,000", is_default=True)

        result = validator.validate(limit)

        assert result.is_valid
        assert result.warnings == []

    def test_amount_required(self, validator: ValidationService):
        assert "amount_required" in rules(validator.validate(Limit(id="l1")))

    def test_negative_amount(self, validator: ValidationService):
        result = validator.validate(Limit(id="l1", amount=Decimal("-5")))

        assert "amount_negative" in rules(result)

    def test_all_failing_rules_are_reported(self, validator: ValidationService):
        limit = Limit(
            id="l1",
            amount=Decimal("50"),
            min_amount=Decimal("500"),
            max_amount=Decimal("100"),
            display_value="$75",
        )

        result = validator.validate(limit)

        assert {"min_exceeds_max", "below_minimum", "display_value_mismatch"} <= rules(result)

    def test_above_maximum(self, validator: ValidationService):
        limit = Limit(id="l1", amount=Decimal("500"), max_amount=Decimal("100"))

        assert rules(validator.validate(limit)) == {"above_maximum"}

    def test_multiple_defaults(self, validator: ValidationService):
        existing = Limit(id="l1", amount=Decimal("100"), is_default=True)
        candidate = Limit(id="l2", amount=Decimal("200"), is_default=True)

        assert "multiple_defaults" in rules(validator.validate(candidate, siblings=[existing]))

    def test_updating_the_default_itself_is_allowed(self, validator: ValidationService):
        existing = Limit(id="l1", amount=Decimal("100"), is_default=True)
        updated = Limit(id="l1", amount=Decimal("200"), is_default=True)

        assert validator.validate(updated, siblings=[existing]).is_valid

    def test_sublimit_cannot_exceed_parent(self, validator: ValidationService):
        parent = Limit(id="parent", amount=Decimal("100000"))
        sublimit = Limit(
            id="sub", limit_type=LimitType.SUBLIMIT, amount=Decimal("250000"), parent_limit_id="parent"
        )

        result = validator.validate(sublimit, parent_limits=[parent])

        assert rules(result) == {"sublimit_exceeds_parent"}

    def test_sublimit_within_parent(self, validator: ValidationService):
        parent = Limit(id="parent", amount=Decimal("100000"))
        sublimit = Limit(
            id="sub", limit_type=LimitType.SUBLIMIT, amount=Decimal("50000"), parent_limit_id="parent"
        )

        assert validator.validate(sublimit, siblings=[parent]).is_valid

    def test_parent_missing_and_self_parent(self, validator: ValidationService):
        orphan = Limit(id="sub", amount=Decimal("1"), parent_limit_id="nope")
        own_parent = Limit(id="sub", amount=Decimal("1"), parent_limit_id="sub")

        assert rules(validator.validate(orphan)) == {"parent_missing"}
        assert rules(validator.validate(own_parent)) == {"parent_is_self"}

    def test_unparseable_display_value(self, validator: ValidationService):
        limit = Limit(id="l1", amount=Decimal("100"), display_value="Included")

        assert rules(validator.validate(limit)) == {"display_value_unparseable"}

    def test_split_limits_skip_display_round_trip(self, validator: ValidationService):
        limit = Limit(
            id="l1", limit_type=LimitType.SPLIT, amount=Decimal("300000"), display_value="100/300/100"
        )

        assert validator.validate(limit).is_valid


class TestDeductibleValidation:
    """Tests for deductible rules."""

    def test_valid_flat_deductible(self, validator: ValidationService):
        deductible = Deductible(id="d1", amount=Decimal("500"), display_value="$500")

        assert validator.validate(deductible).is_valid

    def test_percentage_requires_percentage(self, validator: ValidationService):
        deductible = Deductible(id="d1", deductible_type=DeductibleType.PERCENTAGE, amount=Decimal("500"))

        assert rules(validator.validate(deductible)) == {"percentage_required", "amount_and_percentage"}

    def test_flat_with_percentage_is_rejected(self, validator: ValidationService):
        deductible = Deductible(id="d1", amount=Decimal("500"), percentage=Decimal("2"))

        assert "amount_and_percentage" in rules(validator.validate(deductible))

    @pytest.mark.parametrize("percentage", ["-1", "101"])
    def test_percentage_out_of_range(self, validator: ValidationService, percentage: str):
        deductible = Deductible(
            id="d1", deductible_type=DeductibleType.PERCENTAGE, percentage=Decimal(percentage)
        )

        assert rules(validator.validate(deductible)) == {"percentage_out_of_range"}

    def test_high_percentage_is_a_warning(self, validator: ValidationService):
        deductible = Deductible(
            id="d1", deductible_type=DeductibleType.PERCENTAGE, percentage=Decimal("75"), display_value="75%"
        )

        result = validator.validate(deductible)

        assert result.is_valid
        assert warning_rules(result) == {"percentage_unusual"}

    def test_retained_bounds(self, validator: ValidationService):
        deductible = Deductible(
            id="d1",
            deductible_type=DeductibleType.PERCENTAGE,
            percentage=Decimal("2"),
            minimum_retained=Decimal("5000"),
            maximum_retained=Decimal("1000"),
        )

        assert rules(validator.validate(deductible)) == {"retained_order"}

    def test_retained_bounds_on_flat_deductible_warn(self, validator: ValidationService):
        deductible = Deductible(id="d1", amount=Decimal("500"), minimum_retained=Decimal("100"))

        result = validator.validate(deductible)

        assert result.is_valid
        assert "retained_not_applicable" in warning_rules(result)

    def test_negative_schedule_step(self, validator: ValidationService):
        deductible = Deductible(
            id="d1",
            deductible_type=DeductibleType.DISAPPEARING,
            amount=Decimal("1000"),
            disappearing_schedule=[
                DisappearingStep(loss_amount=Decimal("5000"), deductible_amount=Decimal("-1"))
            ],
        )

        assert rules(validator.validate(deductible)) == {"schedule_negative"}

    def test_waiting_period_display_value(self, validator: ValidationService):
        deductible = Deductible(
            id="d1", deductible_type=DeductibleType.WAITING, amount=Decimal("30"), display_value="30 days"
        )

        assert validator.validate(deductible).is_valid

    def test_percentage_display_mismatch(self, validator: ValidationService):
        deductible = Deductible(
            id="d1", deductible_type=DeductibleType.PERCENTAGE, percentage=Decimal("2"), display_value="5%"
        )

        assert rules(validator.validate(deductible)) == {"display_value_mismatch"}


class TestCoverageValidation:
    """Tests for coverage-level rules."""

    def test_minimal_coverage_warns_about_code(self, validator: ValidationService):
        result = validator.validate(Coverage(id="c1", name="Property"))

        assert result.is_valid
        assert warning_rules(result) == {"coverage_code_recommended"}

    def test_name_required(self, validator: ValidationService):
        assert "name_required" in rules(validator.validate(Coverage(id="c1", name="  ")))

    def test_numeric_fields(self, validator: ValidationService):
        coverage = Coverage(
            id="c1",
            name="Property",
            coverage_code="PROP",
            coinsurance_percentage=Decimal("120"),
            waiting_period=-1,
            claims_reporting_period=-3,
            base_premium=Decimal("-10"),
        )

        result = validator.validate(coverage)

        assert rules(result) == {"coinsurance_out_of_range", "period_negative", "premium_negative"}
        assert len(result.errors) == 4

    def test_low_coinsurance_warns(self, validator: ValidationService):
        coverage = Coverage(id="c1", name="Property", coverage_code="PROP", coinsurance_percentage=Decimal("40"))

        assert warning_rules(validator.validate(coverage)) == {"coinsurance_unusual"}

    def test_unnamed_exclusions_and_conditions(self, validator: ValidationService):
        coverage = Coverage(
            id="c1",
            name="Property",
            coverage_code="PROP",
            exclusions=[Exclusion(name="Flood"), Exclusion(name="")],
            conditions=[Condition(name=" ")],
        )

        result = validator.validate(coverage)

        assert rules(result) == {"exclusion_name_required", "condition_name_required"}
        assert result.errors[0].field == "exclusions[1].name"

    def test_required_and_incompatible(self, validator: ValidationService):
        coverage = Coverage(
            id="c1",
            name="Property",
            coverage_code="PROP",
            required_coverages=["c2", "c1"],
            incompatible_coverages=["c2"],
        )

        assert rules(validator.validate(coverage)) == {"required_and_incompatible", "self_reference"}

    def test_dependency_contradiction_one_hop(self, validator: ValidationService):
        coverage = Coverage(id="c1", name="Property", coverage_code="PROP", required_coverages=["c2", "c9"])
        related = {"c2": Coverage(id="c2", name="Flood", incompatible_coverages=["c1"])}

        result = validator.validate(coverage, related=related)

        assert rules(result) == {"dependency_contradiction"}
        assert warning_rules(result) == {"unknown_dependency"}

    def test_unsupported_entity(self, validator: ValidationService):
        with pytest.raises(TypeError):
            validator.validate("not an entity")

    def test_format_lists_errors_then_warnings(self, validator: ValidationService):
        result = validator.validate(Coverage(id="c1", name=""))

        text = result.format()

        assert text.startswith("Errors:")
        assert "Coverage name is required" in text
        assert "Warnings:" in text
