"""Value parser for legacy limit/deductible display strings.

Turns strings such as ``"$1,000,000"``, ``"2%"`` or ``"30 days"`` into
typed numeric values, and renders typed records back into display strings
for dual-write. Parsing is rule-based and deterministic: the same input
always yields the same result, and no input raises.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from coverage_engine.schemas.coverage import Deductible, DeductibleType, Limit, LimitType
from coverage_engine.services.parsing.constants import (
    CURRENCY_SYMBOL_TO_ISO,
    DAYS_PER_UNIT,
    DEDUCTIBLE_TYPE_KEYWORDS,
    DEFAULT_CURRENCY_SYMBOL,
    DIGIT_PATTERN,
    LIMIT_TYPE_KEYWORDS,
    MAGNITUDE_SUFFIXES,
    SPLIT_LIMIT_PATTERN,
    VALUE_PATTERN,
)
from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

AttributeKind = Union[LimitType, DeductibleType, None]


class ValueUnit(str, Enum):
    CURRENCY = "currency"
    PERCENT = "percent"
    DAYS = "days"


@dataclass(frozen=True)
class ParsedValue:
    """Result of parsing one display string.

    ``ok`` is False when the string could not be mapped to a single numeric
    value; ``reason`` then says why.
    """
    raw: str
    ok: bool
    amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    unit: Optional[ValueUnit] = None
    currency: Optional[str] = None
    descriptor: str = ""
    reason: Optional[str] = None

    @property
    def ratio(self) -> Optional[Decimal]:
        """Percentage as a fraction (2% -> 0.02)."""
        if self.percentage is None:
            return None
        return self.percentage / Decimal(100)

    @property
    def value(self) -> Optional[Decimal]:
        return self.percentage if self.unit is ValueUnit.PERCENT else self.amount


def _failure(raw: str, reason: str) -> ParsedValue:
    LOGGER.debug(f"Could not parse value: {raw!r}", extra={"reason": reason})
    return ParsedValue(raw=raw, ok=False, reason=reason)


class ValueParser:
    """Parser and renderer for coverage attribute values.

    Handles:
    - Currency amounts: "$1,000,000", "USD 500", "1.5M", "250K"
    - Percentages: "2%", "5 percent"
    - Waiting periods: "30 days", "2 weeks"
    - An optional label or trailing descriptor: "Aggregate: $2,000,000",
      "$100,000 per person"
    """

    CURRENCY_SYMBOL_TO_ISO = CURRENCY_SYMBOL_TO_ISO
    MAGNITUDE_SUFFIXES = MAGNITUDE_SUFFIXES
    DAYS_PER_UNIT = DAYS_PER_UNIT
    SPLIT_LIMIT_PATTERN = SPLIT_LIMIT_PATTERN
    VALUE_PATTERN = VALUE_PATTERN
    LIMIT_TYPE_KEYWORDS = LIMIT_TYPE_KEYWORDS
    DEDUCTIBLE_TYPE_KEYWORDS = DEDUCTIBLE_TYPE_KEYWORDS

    def parse(self, display_value: Optional[str], kind: AttributeKind = None) -> ParsedValue:
        """Parse a display string into a numeric value.

        Args:
            display_value: Legacy display string
            kind: Limit or deductible type the value is parsed for. Limits
                reject percentages and day counts; a waiting-period
                deductible reads a bare number as days.

        Returns:
            ParsedValue: ``ok=False`` with a reason if the string is not a
            single amount, percentage or period
        """
        raw = "" if display_value is None else str(display_value)
        text = " ".join(raw.split())
        if not text:
            return _failure(raw, "empty value")

        if self.SPLIT_LIMIT_PATTERN.search(text):
            return _failure(raw, "split limit notation does not map to a single amount")

        match = self.VALUE_PATTERN.match(text)
        if not match:
            return _failure(raw, "no numeric amount found")

        rest = match.group("rest") or ""
        if DIGIT_PATTERN.search(rest):
            return _failure(raw, "more than one number in value")

        try:
            number = Decimal(match.group("number").replace(",", ""))
        except InvalidOperation:
            return _failure(raw, "malformed number")

        suffix = match.group("suffix")
        if suffix:
            number *= self.MAGNITUDE_SUFFIXES[suffix.upper()]
        if match.group("sign") or match.group("inner_sign"):
            number = -number

        symbol = match.group("symbol")
        code = match.group("code")
        currency = self.CURRENCY_SYMBOL_TO_ISO.get(symbol) if symbol else (code.upper() if code else None)
        descriptor = " ".join(part for part in (match.group("label"), rest) if part).strip()
        is_limit = isinstance(kind, LimitType)

        if match.group("percent"):
            if currency:
                return _failure(raw, "value mixes a currency and a percentage")
            if suffix:
                return _failure(raw, "magnitude suffix on a percentage")
            if is_limit:
                return _failure(raw, "percentage is not a valid limit amount")
            return ParsedValue(
                raw=raw,
                ok=True,
                percentage=number,
                unit=ValueUnit.PERCENT,
                descriptor=descriptor,
            )

        unit = match.group("unit")
        if unit or kind is DeductibleType.WAITING:
            if currency:
                return _failure(raw, "currency amount given for a time period")
            if is_limit:
                return _failure(raw, "time period is not a valid limit amount")
            days = number * self.DAYS_PER_UNIT[unit.lower()] if unit else number
            return ParsedValue(
                raw=raw,
                ok=True,
                amount=days,
                unit=ValueUnit.DAYS,
                descriptor=descriptor,
            )

        return ParsedValue(
            raw=raw,
            ok=True,
            amount=number,
            unit=ValueUnit.CURRENCY,
            currency=currency or self.CURRENCY_SYMBOL_TO_ISO[DEFAULT_CURRENCY_SYMBOL],
            descriptor=descriptor,
        )

    def infer_limit_type(self, text: str, default: LimitType = LimitType.PER_OCCURRENCE) -> LimitType:
        lowered = (text or "").lower()
        for keywords, limit_type in self.LIMIT_TYPE_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return limit_type
        return default

    def infer_deductible_type(
        self, text: str, default: DeductibleType = DeductibleType.FLAT
    ) -> DeductibleType:
        lowered = (text or "").lower()
        for keywords, deductible_type in self.DEDUCTIBLE_TYPE_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return deductible_type
        return default

    @staticmethod
    def render_amount(amount: Decimal, symbol: str = DEFAULT_CURRENCY_SYMBOL) -> str:
        """Render a currency amount: ``Decimal("100000")`` -> ``"$100,000"``."""
        sign = "-" if amount < 0 else ""
        magnitude = abs(amount)
        if magnitude == magnitude.to_integral_value():
            return f"{sign}{symbol}{magnitude:,.0f}"
        return f"{sign}{symbol}{magnitude:,.2f}"

    @staticmethod
    def render_percentage(percentage: Decimal) -> str:
        return f"{percentage.normalize():f}%"

    @staticmethod
    def render_days(days: Decimal) -> str:
        count = f"{days.normalize():f}"
        return f"{count} day" if days == 1 else f"{count} days"

    def render_limit(self, limit: Limit) -> str:
        """Render a limit for the legacy array.

        Non-default types carry their display name so the string keeps the
        type when it is read back through type inference.
        """
        if limit.amount is None:
            return limit.display_value
        if limit.limit_type is LimitType.SPLIT and limit.display_value:
            return limit.display_value
        rendered = self.render_amount(limit.amount)
        if limit.limit_type is LimitType.PER_OCCURRENCE:
            return rendered
        return f"{rendered} {limit.limit_type.display_name}"

    def render_deductible(self, deductible: Deductible) -> str:
        deductible_type = deductible.deductible_type
        if deductible_type is DeductibleType.PERCENTAGE:
            if deductible.percentage is None:
                return deductible.display_value
            return self.render_percentage(deductible.percentage)
        if deductible.amount is None:
            return deductible.display_value
        if deductible_type is DeductibleType.WAITING:
            return self.render_days(deductible.amount)
        rendered = self.render_amount(deductible.amount)
        if deductible_type is DeductibleType.FLAT:
            return rendered
        return f"{rendered} {deductible_type.display_name}"
