"""
Value normalizers for heterogeneous provider payloads.

Every helper here is pure: no I/O, no logging, never raises on bad input.
Unparseable input yields None so callers can chain aliases with pick_number().
"""

import math
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

Number = Union[int, float]

SQFT_PER_ACRE = 43560
NUMBER_DECORATION = re.compile(r'[$,%\s]')
APN_SEPARATORS = re.compile(r'[\s-]+')
NON_DIGITS = re.compile(r'\D')


def to_number(value: Any) -> Optional[float]:
    """
    Parse a provider value into a finite float.

    Strips currency, thousands separators, percent signs and whitespace.

    Example:
        "$1,234.50" -> 1234.5
        "12.5%"     -> 12.5
        "abc"       -> None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        parsed = float(value)
        return parsed if math.isfinite(parsed) else None

    cleaned = NUMBER_DECORATION.sub('', str(value))
    if not cleaned:
        return None
    try:
        parsed = float(cleaned)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def to_integer(value: Any) -> Optional[int]:
    parsed = to_number(value)
    return None if parsed is None else int(parsed)


def normalize_text(value: Any) -> Optional[str]:
    """Trimmed string, or None when blank"""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_percent(value: Any) -> Optional[float]:
    """
    Express a rate as a percentage rounded to 2 decimals.

    Values <= 1 are treated as fractions and scaled by 100; values > 1 are
    assumed to already be percentages. An input of exactly 1 therefore reads
    as 100%.
    """
    parsed = to_number(value)
    if parsed is None:
        return None
    if parsed > 1:
        return round(parsed, 2)
    return round(parsed * 100, 2)


def pick_number(*candidates: Any) -> Optional[float]:
    """Return the first candidate that parses to a finite number."""
    for candidate in candidates:
        parsed = to_number(candidate)
        if parsed is not None:
            return parsed
    return None


def calculate_percent_change(current: Optional[Number], previous: Optional[Number]) -> Optional[float]:
    if current is None or previous is None or previous == 0:
        return None
    return round(((current - previous) / previous) * 100, 2)


def calculate_millage(tax_amount: Optional[Number], assessed_value: Optional[Number]) -> Optional[float]:
    """Tax dollars per $1,000 of assessed value."""
    if tax_amount is None or assessed_value is None or assessed_value == 0:
        return None
    return round((tax_amount / assessed_value) * 1000, 3)


def calculate_assessment_ratio(assessed_value: Optional[Number], base_value: Optional[Number]) -> Optional[float]:
    if assessed_value is None or base_value is None or base_value == 0:
        return None
    return round(assessed_value / base_value, 3)


def to_acres(lot_size_sqft: Optional[Number], digits: int = 2) -> Optional[float]:
    if not lot_size_sqft:
        return None
    return round(lot_size_sqft / SQFT_PER_ACRE, digits)


def average(*values: Optional[Number]) -> Optional[float]:
    """Unweighted mean of the non-null values, rounded to 2 decimals."""
    numbers = [v for v in values if v is not None and math.isfinite(v)]
    if not numbers:
        return None
    return round(sum(numbers) / len(numbers), 2)


def normalize_apn(value: Any) -> Optional[str]:
    """
    Strip whitespace and hyphens from a parcel number.

    Example:
        "12-345-678" -> "12345678"
    """
    raw = normalize_text(value)
    if not raw:
        return None
    return APN_SEPARATORS.sub('', raw) or None


def apns_match(left: Any, right: Any) -> bool:
    """Case- and separator-insensitive APN comparison"""
    a = normalize_apn(left)
    b = normalize_apn(right)
    return bool(a and b and a.lower() == b.lower())


def normalize_fips(value: Any) -> Optional[str]:
    """
    Reduce a county code to its 5-digit zero-padded form.

    Example:
        "6037"           -> "06037"
        "0500000US17019" -> "17019"
    """
    raw = normalize_text(value)
    if not raw:
        return None
    digits = NON_DIGITS.sub('', raw)
    if not digits:
        return None
    return digits.zfill(5)[-5:]


def combine_state_county_fips(state_fips: Any, county_fips: Any) -> Optional[str]:
    state = NON_DIGITS.sub('', normalize_text(state_fips) or '')
    county = NON_DIGITS.sub('', normalize_text(county_fips) or '')
    if not state or not county:
        return None
    return f"{state.zfill(2)}{county.zfill(3)}"


def is_empty_value(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def year_of(item: Any) -> Optional[int]:
    if not isinstance(item, dict):
        return None
    tax_block = item.get('tax') if isinstance(item.get('tax'), dict) else {}
    for candidate in (tax_block.get('taxYear'), item.get('taxYear'), item.get('assessmentYear'), item.get('year')):
        year = to_integer(candidate)
        if year is not None:
            return year
    return None


def _year_items(items: Union[List[Any], Dict[str, Any], None]) -> List[Any]:
    if not items:
        return []
    if isinstance(items, list):
        return items
    if not isinstance(items, dict):
        return []

    normalized = []
    for key, value in items.items():
        if isinstance(value, dict) and year_of(value) is None:
            key_year = to_integer(key)
            if key_year is not None:
                value = {**value, 'year': key_year}
        normalized.append(value)
    return normalized


def get_latest_by_year(items: Union[List[Any], Dict[str, Any], None]) -> Optional[Dict[str, Any]]:
    """
    Pick the newest entry from a tax or assessment history.

    Accepts either a list of records or a mapping keyed by year. Records
    without a detectable year sort last.
    """
    normalized = _year_items(items)
    if not normalized:
        return None
    ranked = sorted(normalized, key=lambda item: year_of(item) or 0, reverse=True)
    latest = ranked[0]
    return latest if isinstance(latest, dict) else None


def parse_year_map_latest(year_map: Optional[Dict[str, Any]]) -> Optional[Tuple[int, Dict[str, Any]]]:
    """Newest (year, entry) pair of a mapping keyed by year, e.g. Rentcast propertyTaxes."""
    if not isinstance(year_map, dict):
        return None

    entries = []
    for key, value in year_map.items():
        year = to_integer(value.get('year')) if isinstance(value, dict) else None
        if year is None:
            year = to_integer(key)
        if year is not None and year >= 0:
            entries.append((year, value))

    if not entries:
        return None
    entries.sort(key=lambda entry: entry[0], reverse=True)
    return entries[0]


def first_text(values: Iterable[Any]) -> Optional[str]:
    for value in values:
        text = normalize_text(value)
        if text:
            return text
    return None
