"""Patterns and lookup tables used by the value parser."""

import re
from decimal import Decimal

from coverage_engine.schemas.coverage import DeductibleType, LimitType

CURRENCY_SYMBOL_TO_ISO = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "₹": "INR",
}

ISO_CURRENCY_CODES = ("USD", "EUR", "GBP", "INR", "CAD", "AUD")

DEFAULT_CURRENCY_SYMBOL = "$"

MAGNITUDE_SUFFIXES = {
    "K": Decimal(1_000),
    "M": Decimal(1_000_000),
    "MM": Decimal(1_000_000),
    "B": Decimal(1_000_000_000),
    "THOUSAND": Decimal(1_000),
    "MILLION": Decimal(1_000_000),
    "BILLION": Decimal(1_000_000_000),
}

DAYS_PER_UNIT = {
    "day": 1,
    "days": 1,
    "week": 7,
    "weeks": 7,
}

# "100/300/100", "$500,000 / $1,000,000"
SPLIT_LIMIT_PATTERN = re.compile(r"\d\s*/\s*[$€£₹]?\s*\d")

VALUE_PATTERN = re.compile(
    r"""
    ^
    (?:(?P<label>[A-Za-z][A-Za-z \-]*?)\s*:\s*)?
    (?P<sign>-)?\s*
    (?:(?P<symbol>[$€£₹])|(?P<code>""" + "|".join(ISO_CURRENCY_CODES) + r""")\s*)?
    \s*(?P<inner_sign>-)?\s*
    (?P<number>\d{1,3}(?:,\d{2,3})+(?:\.\d+)?|\d+(?:\.\d+)?|\.\d+)
    \s*(?P<suffix>thousand|million|billion|MM|[KMB])?(?![A-Za-z])
    \s*(?P<percent>%|percent(?![A-Za-z])|pct(?![A-Za-z]))?
    \s*(?P<unit>days?|weeks?)?(?![A-Za-z])
    \s*(?P<rest>.*?)
    \s*$
    """,
    re.IGNORECASE | re.VERBOSE,
)

DIGIT_PATTERN = re.compile(r"\d")

# Keyword rules for inferring types from descriptive legacy strings.
# Order matters: the first matching rule wins.
LIMIT_TYPE_KEYWORDS = (
    (("per occurrence", "each occurrence"), LimitType.PER_OCCURRENCE),
    (("aggregate", "total"), LimitType.AGGREGATE),
    (("per person", "each person"), LimitType.PER_PERSON),
    (("per location", "each location"), LimitType.PER_LOCATION),
    (("sublimit", "sub-limit"), LimitType.SUBLIMIT),
    (("combined",), LimitType.COMBINED),
    (("split",), LimitType.SPLIT),
)

DEDUCTIBLE_TYPE_KEYWORDS = (
    (("%", "percent"), DeductibleType.PERCENTAGE),
    (("franchise",), DeductibleType.FRANCHISE),
    (("disappearing",), DeductibleType.DISAPPEARING),
    (("per occurrence", "each occurrence"), DeductibleType.PER_OCCURRENCE),
    (("aggregate", "annual"), DeductibleType.AGGREGATE),
    (("waiting", "days"), DeductibleType.WAITING),
)
