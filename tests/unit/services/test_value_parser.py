"""Unit tests for the value parser."""

from decimal import Decimal

import pytest

from coverage_engine.schemas.coverage import Deductible, DeductibleType, Limit, LimitType
from coverage_engine.services.parsing.value_parser import ValueParser, ValueUnit


class TestParse:
    """Parsing legacy display strings."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("$1,000,000", Decimal("1000000")),
            ("$100,000", Decimal("100000")),
            ("1000000", Decimal("1000000")),
            ("  $ 2,500.50  ", Decimal("2500.50")),
            ("USD 500", Decimal("500")),
            ("£750", Decimal("750")),
            ("$1M", Decimal("1000000")),
            ("1.5MM", Decimal("1500000")),
            ("250K", Decimal("250000")),
            ("$2 Million", Decimal("2000000")),
            ("Aggregate: $2,000,000", Decimal("2000000")),
            ("$1,000,000 per occurrence", Decimal("1000000")),
        ],
    )
    def test_parses_currency_amounts(self, parser: ValueParser, raw: str, expected: Decimal):
        parsed = parser.parse(raw, LimitType.PER_OCCURRENCE)

        assert parsed.ok, parsed.reason
        assert parsed.amount == expected
        assert parsed.percentage is None
        assert parsed.unit is ValueUnit.CURRENCY

    def test_records_currency_and_descriptor(self, parser: ValueParser):
        parsed = parser.parse("€5,000 each person")

        assert parsed.currency == "EUR"
        assert parsed.descriptor == "each person"

    def test_percentage_routes_to_percentage_field(self, parser: ValueParser):
        parsed = parser.parse("2%", DeductibleType.FLAT)

        assert parsed.ok
        assert parsed.amount is None
        assert parsed.percentage == Decimal("2")
        assert parsed.ratio == Decimal("0.02")
        assert parsed.unit is ValueUnit.PERCENT

    def test_percent_word(self, parser: ValueParser):
        assert parser.parse("5 percent").percentage == Decimal("5")

    def test_days_and_weeks(self, parser: ValueParser):
        assert parser.parse("30 days").amount == Decimal("30")
        assert parser.parse("2 weeks").amount == Decimal("14")
        assert parser.parse("30 days").unit is ValueUnit.DAYS

    def test_bare_number_is_days_for_waiting_period(self, parser: ValueParser):
        parsed = parser.parse("72", DeductibleType.WAITING)

        assert parsed.unit is ValueUnit.DAYS
        assert parsed.amount == Decimal("72")

    def test_negative_amount_parses(self, parser: ValueParser):
        # Sign is kept; rejecting it is the validator's job
        assert parser.parse("-$500").amount == Decimal("-500")

    @pytest.mark.parametrize(
        "raw, reason_fragment",
        [
            ("not-a-number", "no numeric amount"),
            ("Included", "no numeric amount"),
            ("", "empty"),
            ("   ", "empty"),
            ("100/300/100", "split"),
            ("$500,000 / $1,000,000", "split"),
            ("$500 plus 10%", "more than one number"),
            ("$10%", "mixes a currency"),
        ],
    )
    def test_unparseable_values_fail_with_reason(self, parser: ValueParser, raw: str, reason_fragment: str):
        parsed = parser.parse(raw)

        assert not parsed.ok
        assert reason_fragment in parsed.reason
        assert parsed.amount is None and parsed.percentage is None

    def test_none_does_not_raise(self, parser: ValueParser):
        assert not parser.parse(None).ok

    def test_limits_reject_percentages_and_periods(self, parser: ValueParser):
        assert not parser.parse("2%", LimitType.AGGREGATE).ok
        assert not parser.parse("30 days", LimitType.PER_OCCURRENCE).ok

    def test_parse_is_deterministic(self, parser: ValueParser):
        assert parser.parse("$1,000,000") == parser.parse("$1,000,000")


class TestRender:
    """Rendering typed values back into display strings."""

    def test_render_amount(self, parser: ValueParser):
        assert parser.render_amount(Decimal("100000")) == "$100,000"
        assert parser.render_amount(Decimal("1000000.00")) == "$1,000,000"
        assert parser.render_amount(Decimal("2500.5")) == "$2,500.50"

    def test_render_percentage_and_days(self, parser: ValueParser):
        assert parser.render_percentage(Decimal("2")) == "2%"
        assert parser.render_percentage(Decimal("2.50")) == "2.5%"
        assert parser.render_days(Decimal("30")) == "30 days"
        assert parser.render_days(Decimal("1")) == "1 day"

    def test_render_limit_keeps_non_default_type(self, parser: ValueParser):
        default_type = Limit(limit_type=LimitType.PER_OCCURRENCE, amount=Decimal("100000"))
        aggregate = Limit(limit_type=LimitType.AGGREGATE, amount=Decimal("2000000"))

        assert parser.render_limit(default_type) == "$100,000"
        assert parser.render_limit(aggregate) == "$2,000,000 Aggregate"
        assert parser.infer_limit_type(parser.render_limit(aggregate)) is LimitType.AGGREGATE

    def test_render_deductible(self, parser: ValueParser):
        assert parser.render_deductible(Deductible(amount=Decimal("500"))) == "$500"
        assert (
            parser.render_deductible(
                Deductible(deductible_type=DeductibleType.PERCENTAGE, percentage=Decimal("2"))
            )
            == "2%"
        )
        assert (
            parser.render_deductible(
                Deductible(deductible_type=DeductibleType.WAITING, amount=Decimal("30"))
            )
            == "30 days"
        )

    @pytest.mark.parametrize("raw", ["$100,000", "$1,000,000", "$2,500.50", "2%", "30 days"])
    def test_rendered_value_parses_back(self, parser: ValueParser, raw: str):
        parsed = parser.parse(raw)
        if parsed.unit is ValueUnit.PERCENT:
            rendered = parser.render_percentage(parsed.percentage)
        elif parsed.unit is ValueUnit.DAYS:
            rendered = parser.render_days(parsed.amount)
        else:
            rendered = parser.render_amount(parsed.amount)

        assert rendered == raw
        assert parser.parse(rendered).value == parsed.value


class TestInference:
    """Keyword-based type inference."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("$2,000,000 Aggregate", LimitType.AGGREGATE),
            ("$100,000 per person", LimitType.PER_PERSON),
            ("$50,000 sublimit", LimitType.SUBLIMIT),
            ("$1,000,000 Combined Single Limit", LimitType.COMBINED),
            ("$1,000,000", LimitType.PER_OCCURRENCE),
        ],
    )
    def test_infer_limit_type(self, parser: ValueParser, raw: str, expected: LimitType):
        assert parser.infer_limit_type(raw) is expected

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("$500 franchise", DeductibleType.FRANCHISE),
            ("$1,000 annual aggregate", DeductibleType.AGGREGATE),
            ("$250 disappearing", DeductibleType.DISAPPEARING),
            ("$500", DeductibleType.FLAT),
        ],
    )
    def test_infer_deductible_type(self, parser: ValueParser, raw: str, expected: DeductibleType):
        assert parser.infer_deductible_type(raw) is expected
