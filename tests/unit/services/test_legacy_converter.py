"""Unit tests for the legacy array converter."""

from decimal import Decimal

from coverage_engine.schemas.coverage import (
    Coverage,
    DeductibleType,
    LegacyField,
    Limit,
    LimitType,
    RecordSource,
)
from coverage_engine.services.parsing.legacy_converter import LegacyConverter


def make_coverage(**fields) -> Coverage:
    fields.setdefault("id", "c1")
    fields.setdefault("product_id", "p1")
    fields.setdefault("name", "Property")
    return Coverage(**fields)


class TestConvertLimits:
    """Converting legacyLimits entries."""

    def test_converts_entries_in_order(self):
        converter = LegacyConverter()
        coverage = make_coverage(legacy_limits=["$1,000,000", "$2,000,000"])

        limits, warnings = converter.convert_limits(coverage)

        assert warnings == []
        assert [limit.id for limit in limits] == ["limit-000", "limit-001"]
        assert [limit.amount for limit in limits] == [Decimal("1000000"), Decimal("2000000")]
        assert [limit.is_default for limit in limits] == [True, False]

    def test_synthesized_records_carry_provenance(self):
        converter = LegacyConverter()
        coverage = make_coverage(legacy_limits=[" $500,000 "])

        limit = converter.convert_limits(coverage)[0][0]

        assert limit.source is RecordSource.MIGRATION
        assert limit.limit_type is LimitType.PER_OCCURRENCE
        assert limit.display_value == "$500,000"
        assert limit.product_id == "p1" and limit.coverage_id == "c1"
        assert limit.migrated_from.field is LegacyField.LIMITS
        assert limit.migrated_from.entry_index == 0
        assert limit.migrated_from.raw_value == " $500,000 "

    def test_unparseable_entry_is_skipped_with_warning(self):
        converter = LegacyConverter()
        coverage = make_coverage(legacy_limits=["$1,000,000", "not-a-number", "$2,000,000"])

        limits, warnings = converter.convert_limits(coverage)

        assert [limit.id for limit in limits] == ["limit-000", "limit-002"]
        assert len(warnings) == 1
        assert warnings[0].entry_index == 1
        assert warnings[0].raw_value == "not-a-number"
        assert warnings[0].kind == "parse"

    def test_default_stays_on_first_entry_even_if_it_fails(self):
        converter = LegacyConverter()
        coverage = make_coverage(legacy_limits=["Included", "$2,000,000"])

        limits, _ = converter.convert_limits(coverage)

        assert len(limits) == 1
        assert not limits[0].is_default

    def test_invalid_record_becomes_validation_warning(self):
        converter = LegacyConverter()
        coverage = make_coverage(legacy_limits=["-$500"])

        limits, warnings = converter.convert_limits(coverage)

        assert limits == []
        assert warnings[0].kind == "validation"
        assert "negative" in warnings[0].reason

    def test_inferred_types(self):
        converter = LegacyConverter(infer_types=True)
        coverage = make_coverage(legacy_limits=["$1,000,000", "$2,000,000 Aggregate"])

        limits, _ = converter.convert_limits(coverage)

        assert [limit.limit_type for limit in limits] == [LimitType.PER_OCCURRENCE, LimitType.AGGREGATE]

    def test_sublimit_attaches_to_parent_default(self):
        converter = LegacyConverter(infer_types=True)
        parent_limits = [Limit(id="limit-000", amount=Decimal("1000000"), is_default=True)]
        coverage = make_coverage(
            id="c2", parent_coverage_id="c1", legacy_limits=["$250,000 sublimit"]
        )

        limits, warnings = converter.convert_limits(coverage, parent_limits)

        assert warnings == []
        assert limits[0].parent_limit_id == "limit-000"

    def test_sublimit_exceeding_parent_is_rejected(self):
        converter = LegacyConverter(infer_types=True)
        parent_limits = [Limit(id="limit-000", amount=Decimal("100000"), is_default=True)]
        coverage = make_coverage(
            id="c2", parent_coverage_id="c1", legacy_limits=["$250,000 sublimit"]
        )

        limits, warnings = converter.convert_limits(coverage, parent_limits)

        assert limits == []
        assert warnings[0].kind == "validation"

    def test_bare_numbers_in_the_array(self):
        converter = LegacyConverter()
        coverage = Coverage.model_validate(
            {"id": "c1", "productId": "p1", "name": "Property", "legacyLimits": [1000000, None]}
        )

        limits, warnings = converter.convert_limits(coverage)

        assert limits[0].amount == Decimal("1000000")
        assert warnings[0].entry_index == 1
        assert warnings[0].reason == "empty value"


class TestConvertDeductibles:
    """Converting legacyDeductibles entries."""

    def test_mixed_units(self):
        converter = LegacyConverter()
        coverage = make_coverage(legacy_deductibles=["$500", "2%", "30 days"])

        deductibles, warnings = converter.convert_deductibles(coverage)

        assert warnings == []
        first, second, third = deductibles
        assert first.deductible_type is DeductibleType.FLAT and first.amount == Decimal("500")
        assert second.deductible_type is DeductibleType.PERCENTAGE
        assert second.percentage == Decimal("2") and second.amount is None
        assert third.deductible_type is DeductibleType.WAITING and third.amount == Decimal("30")
        assert [d.id for d in deductibles] == ["deductible-000", "deductible-001", "deductible-002"]

    def test_keyword_inference_never_overrides_the_unit(self):
        converter = LegacyConverter(infer_types=True)
        coverage = make_coverage(legacy_deductibles=["$1,000 franchise", "$500 waiting"])

        deductibles, _ = converter.convert_deductibles(coverage)

        assert deductibles[0].deductible_type is DeductibleType.FRANCHISE
        assert deductibles[1].deductible_type is DeductibleType.FLAT

    def test_convert_combines_both_attributes(self):
        converter = LegacyConverter()
        coverage = make_coverage(legacy_limits=["oops"], legacy_deductibles=["$500", "???"])

        plan = converter.convert(coverage)

        assert plan.limits == []
        assert len(plan.deductibles) == 1
        assert [(w.field, w.entry_index) for w in plan.warnings] == [
            (LegacyField.LIMITS, 0),
            (LegacyField.DEDUCTIBLES, 1),
        ]

    def test_conversion_is_deterministic(self):
        converter = LegacyConverter()
        coverage = make_coverage(legacy_limits=["$1M"], legacy_deductibles=["$1,000"])

        assert converter.convert(coverage) == converter.convert(coverage)
