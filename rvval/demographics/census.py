"""
US Census Bureau API access.

Only the county-level calls the resolution engine needs:
- ACS 5-year profile (population, income, poverty, employment, home value, 2BR rent)
- ACS county name list for a state (FIPS lookup by name)
- County Business Patterns (employees and establishments)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import structlog

from ..config import get_settings
from ..providers.http import ProviderHttpClient
from ..utils.values import normalize_fips, to_number

logger = structlog.get_logger(__name__)

BASE_URL = "https://api.census.gov/data"

# ACS 5-year variables for the county profile
ACS_PROFILE_VARIABLES = {
    "B01003_001E": "population",                # Total population
    "B19013_001E": "median_household_income",   # Median household income
    "B17001_002E": "poverty_count",             # Population below poverty level
    "B23025_004E": "employed",                  # Employed civilian labor force
    "B25077_001E": "median_property_value",     # Median value, owner-occupied
    "B25031_003E": "two_br_rent",               # Median gross rent, 2 bedrooms
}


@dataclass
class CensusCountyMetrics:
    year: int
    population: Optional[float] = None
    median_household_income: Optional[float] = None
    poverty_count: Optional[float] = None
    employed: Optional[float] = None
    median_property_value: Optional[float] = None
    two_br_rent: Optional[float] = None

    @property
    def poverty_rate(self) -> Optional[float]:
        """Share of population below the poverty line, in percent"""
        if not self.population or self.poverty_count is None:
            return None
        return round((self.poverty_count / self.population) * 100, 2)


def split_fips(fips_code: str) -> Optional[Tuple[str, str]]:
    fips = normalize_fips(fips_code)
    if not fips:
        return None
    return fips[:2], fips[2:]


class CensusClient:
    """County-level Census Bureau queries. Every method returns None/[] on failure."""

    PROVIDER = "census"

    def __init__(self, http: ProviderHttpClient, api_key: Optional[str] = None, acs_year: Optional[int] = None):
        config = get_settings()
        self.http = http
        self.api_key = api_key if api_key is not None else config.CENSUS_API_KEY
        self.acs_year = acs_year or config.CENSUS_ACS_YEAR

    def _params(self, **params) -> Dict[str, str]:
        if self.api_key:
            params['key'] = self.api_key
        return params

    async def _table(self, url: str, params: Dict[str, str], stage: str) -> List[list]:
        payload = await self.http.get_json(url, params=params, provider=self.PROVIDER, stage=stage)
        if not isinstance(payload, list) or len(payload) < 2:
            return []
        return [row for row in payload if isinstance(row, list)]

    async def county_metrics(self, fips_code: str, year: Optional[int] = None) -> Optional[CensusCountyMetrics]:
        parts = split_fips(fips_code)
        if not parts:
            return None
        state, county = parts
        year = year or self.acs_year

        variables = ','.join(['NAME', *ACS_PROFILE_VARIABLES])
        rows = await self._table(
            f"{BASE_URL}/{year}/acs/acs5",
            self._params(get=variables, **{'for': f"county:{county}", 'in': f"state:{state}"}),
            stage="acs_county_profile",
        )
        if not rows:
            return None

        header, values = rows[0], rows[1]
        columns = dict(zip(header, values))
        metrics = CensusCountyMetrics(year=year)
        for variable, attribute in ACS_PROFILE_VARIABLES.items():
            setattr(metrics, attribute, to_number(columns.get(variable)))
        return metrics

    async def county_names(self, state_fips: str, year: Optional[int] = None) -> List[Tuple[str, str]]:
        """(NAME, 3-digit county code) pairs for every county in a state"""
        rows = await self._table(
            f"{BASE_URL}/{year or self.acs_year}/acs/acs5",
            self._params(get='NAME', **{'for': 'county:*', 'in': f"state:{state_fips}"}),
            stage="acs_county_list",
        )
        counties = []
        for row in rows[1:]:
            if len(row) < 3 or not row[0] or not row[2]:
                continue
            counties.append((str(row[0]), str(row[2]).zfill(3)))
        return counties

    async def business_patterns(self, fips_code: str, year: int) -> Tuple[Optional[float], Optional[float]]:
        """County Business Patterns (employees, establishments) for one year"""
        parts = split_fips(fips_code)
        if not parts:
            return None, None
        state, county = parts

        rows = await self._table(
            f"{BASE_URL}/{year}/cbp",
            self._params(get='EMP,ESTAB', **{'for': f"county:{county}", 'in': f"state:{state}"}),
            stage="county_business_patterns",
        )
        if not rows:
            return None, None

        columns = dict(zip(rows[0], rows[1]))
        return to_number(columns.get('EMP')), to_number(columns.get('ESTAB'))
