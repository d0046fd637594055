"""
HUD CHAS housing-supply lookup.

Reads the county-level CHAS tables from HUD_CHAS_CSV_PATH, which may be
either a directory holding the raw HUD tables or a single combined CSV:

    Directory:  Table16.csv  (T16_est88 = ELI renter households)
                Table15C.csv (T15C_est4 = units affordable at 30% AMI,
                              T15C_est1 = total units)
                optional hud_rents.csv / fmr.csv / fmr_by_county.csv / 2br_rent.csv
    File:       one row per county with fips, eli, affordable units, ...

Parsed tables are cached per path for the life of the process.
"""

import csv
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import structlog

from ..config import get_settings
from ..utils.values import normalize_fips, to_number

logger = structlog.get_logger(__name__)

SOURCE_LABEL = "HUD CHAS Dataset (Lookup via FIPS)"

OPTIONAL_RENT_FILES = ('hud_rents.csv', 'fmr.csv', 'fmr_by_county.csv', '2br_rent.csv')
TWO_BR_RENT_COLUMNS = ('two_br_rent', '2_br_rent', 'two_bedroom_rent', 'two_bedroom_fmr', 'fmr_2br', 'rent_2br')
FIPS_COLUMNS = ('fips', 'county_fips', 'fips_code')
TRAILING_FIPS = re.compile(r'(\d{5})$')
HEADER_CLEANUP = re.compile(r'[^a-z0-9]+')


@dataclass
class HudChasMetrics:
    eli_renter_households: Optional[float] = None
    units_affordable_30: Optional[float] = None
    units_per_100: Optional[float] = None
    total_units: Optional[float] = None
    two_br_rent: Optional[float] = None


def units_per_100(affordable: Optional[float], eli_households: Optional[float]) -> Optional[float]:
    """Affordable units per 100 extremely-low-income renter households"""
    if not affordable or not eli_households:
        return None
    return round((affordable / eli_households) * 100, 2)


def _normalize_header(value: str) -> str:
    return HEADER_CLEANUP.sub('_', (value or '').strip().lower())


def _read_rows(path: Path) -> List[Dict[str, str]]:
    """Rows keyed by normalized header"""
    with open(path, newline='', encoding='utf-8-sig') as handle:
        reader = csv.DictReader(handle)
        return [
            {_normalize_header(key): (value or '') for key, value in row.items() if key is not None}
            for row in reader
        ]


def _column(row: Dict[str, str], candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        value = row.get(_normalize_header(candidate))
        if value not in (None, ''):
            return value
    return None


def _row_fips(row: Dict[str, str]) -> Optional[str]:
    geoid = (row.get('geoid') or '').strip()
    match = TRAILING_FIPS.search(geoid)
    if match:
        return match.group(1)

    raw_fips = _column(row, FIPS_COLUMNS)
    if raw_fips:
        return normalize_fips(raw_fips)

    state = (_column(row, ('st', 'state')) or '').strip()
    county = (_column(row, ('cnty', 'county')) or '').strip()
    if state.isdigit() and county.isdigit():
        return f"{state.zfill(2)}{county.zfill(3)}"
    return None


class HudChasTable:
    """County lookup over one CHAS directory or combined file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lookup: Optional[Dict[str, HudChasMetrics]] = None

    def _metrics(self, lookup: Dict[str, HudChasMetrics], fips: str) -> HudChasMetrics:
        if fips not in lookup:
            lookup[fips] = HudChasMetrics()
        return lookup[fips]

    def _load_directory(self) -> Dict[str, HudChasMetrics]:
        table16 = self.path / 'Table16.csv'
        table15c = self.path / 'Table15C.csv'
        if not table16.is_file() or not table15c.is_file():
            logger.warning("hud_chas_tables_missing", path=str(self.path))
            return {}

        lookup: Dict[str, HudChasMetrics] = {}
        for row in _read_rows(table16):
            fips = _row_fips(row)
            if fips:
                self._metrics(lookup, fips).eli_renter_households = to_number(row.get('t16_est88'))

        for row in _read_rows(table15c):
            fips = _row_fips(row)
            if fips:
                metrics = self._metrics(lookup, fips)
                metrics.units_affordable_30 = to_number(row.get('t15c_est4'))
                metrics.total_units = to_number(row.get('t15c_est1'))

        for name in OPTIONAL_RENT_FILES:
            rent_path = self.path / name
            if not rent_path.is_file():
                continue
            for row in _read_rows(rent_path):
                fips = _row_fips(row)
                rent = to_number(_column(row, TWO_BR_RENT_COLUMNS))
                if fips and rent is not None:
                    self._metrics(lookup, fips).two_br_rent = rent

        return lookup

    def _load_file(self) -> Dict[str, HudChasMetrics]:
        lookup: Dict[str, HudChasMetrics] = {}
        for row in _read_rows(self.path):
            fips = normalize_fips(_column(row, FIPS_COLUMNS))
            if not fips:
                continue
            lookup[fips] = HudChasMetrics(
                eli_renter_households=to_number(_column(row, ('eli_renter_households', 'eli_renter_hh', 'eli_households'))),
                units_affordable_30=to_number(_column(row, ('units_affordable_at_30', 'units_affordable_30', 'units_affordable'))),
                units_per_100=to_number(_column(row, ('units_per_100', 'units_per_100_eli'))),
                total_units=to_number(_column(row, ('total_units', 'total_housing_units'))),
                two_br_rent=to_number(_column(row, TWO_BR_RENT_COLUMNS)),
            )
        return lookup

    def load(self) -> Dict[str, HudChasMetrics]:
        if self._lookup is not None:
            return self._lookup

        if self.path.is_dir():
            lookup = self._load_directory()
        elif self.path.is_file():
            lookup = self._load_file()
        else:
            logger.info("hud_chas_path_missing", path=str(self.path))
            lookup = {}

        for metrics in lookup.values():
            if metrics.units_per_100 is None:
                metrics.units_per_100 = units_per_100(metrics.units_affordable_30, metrics.eli_renter_households)

        logger.info("hud_chas_loaded", path=str(self.path), counties=len(lookup))
        self._lookup = lookup
        return lookup

    def lookup(self, fips_code: Optional[str]) -> Optional[HudChasMetrics]:
        fips = normalize_fips(fips_code)
        if not fips:
            return None
        return self.load().get(fips)


_tables: Dict[Path, HudChasTable] = {}


def get_hud_chas_table(path: Optional[Union[str, Path]] = None) -> HudChasTable:
    """Cached table for ``path`` (defaults to HUD_CHAS_CSV_PATH)"""
    resolved = Path(path or get_settings().HUD_CHAS_CSV_PATH).resolve()
    if resolved not in _tables:
        _tables[resolved] = HudChasTable(resolved)
    return _tables[resolved]
