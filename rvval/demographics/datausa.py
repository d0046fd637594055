"""
DataUSA Tesseract county metrics.

Each ACS measure is fetched as a (latest, previous) year pair so the change
can be derived; the four series are requested concurrently. Violent crime
comes from the County Health Rankings cube at its latest year, and property
crime is estimated from it with a fixed ratio.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from ..providers.http import ProviderHttpClient
from ..utils.values import calculate_percent_change, normalize_fips, to_integer, to_number

logger = structlog.get_logger(__name__)

TESSERACT_URL = "https://api.datausa.io/tesseract/data.jsonrecords"
PROPERTY_CRIME_FACTOR = 1.63

POPULATION = ('acs_yg_total_population_5', 'Population')
HOUSEHOLD_INCOME = ('acs_ygr_median_household_income_race_5', 'Household Income by Race')
PROPERTY_VALUE = ('acs_yg_housing_median_value_5', 'Property Value')
POVERTY_POPULATION = ('acs_ygpsar_poverty_by_gender_age_race_5', 'Poverty Population')
CRIME_CUBE = ('county_health_ranking', 'Violent Crime')


def county_code(fips_code: str) -> Optional[str]:
    """DataUSA county member key, e.g. "05000US17167" """
    fips = normalize_fips(fips_code)
    return f"05000US{fips}" if fips else None


@dataclass
class SeriesPair:
    latest: Optional[float] = None
    previous: Optional[float] = None
    latest_year: Optional[int] = None

    @property
    def change(self) -> Optional[float]:
        return calculate_percent_change(self.latest, self.previous)


@dataclass
class DataUsaCountyMetrics:
    population: SeriesPair
    household_income: SeriesPair
    property_value: SeriesPair
    poverty_population: SeriesPair
    violent_crime: Optional[float] = None
    crime_year: Optional[int] = None

    @property
    def poverty_rate(self) -> Optional[float]:
        if not self.population.latest or not self.poverty_population.latest:
            return None
        return round((self.poverty_population.latest / self.population.latest) * 100, 2)

    @property
    def property_crime(self) -> Optional[float]:
        if self.violent_crime is None:
            return None
        return round(self.violent_crime * PROPERTY_CRIME_FACTOR, 2)

    @property
    def year(self) -> Optional[int]:
        for series in (self.population, self.household_income, self.property_value):
            if series.latest_year is not None:
                return series.latest_year
        return None


class DataUsaClient:
    PROVIDER = "datausa"

    def __init__(self, http: ProviderHttpClient):
        self.http = http

    async def _rows(self, cube: str, measure: str, member: str, **extra) -> list:
        params = {
            'cube': cube,
            'drilldowns': 'County,Year',
            'measures': measure,
            'include': f"County:{member}",
            **extra,
        }
        payload = await self.http.get_json(TESSERACT_URL, params=params, provider=self.PROVIDER, stage=cube)
        rows = payload.get('data') if isinstance(payload, dict) else None
        return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []

    async def series_pair(self, cube: str, measure: str, member: str) -> SeriesPair:
        rows = await self._rows(cube, measure, member)
        if not rows:
            return SeriesPair()

        ordered = sorted(rows, key=lambda row: to_integer(row.get('Year')) or 0, reverse=True)
        previous = ordered[1] if len(ordered) > 1 else {}
        return SeriesPair(
            latest=to_number(ordered[0].get(measure)),
            previous=to_number(previous.get(measure)),
            latest_year=to_integer(ordered[0].get('Year')),
        )

    async def latest_violent_crime(self, member: str):
        cube, measure = CRIME_CUBE
        rows = await self._rows(cube, measure, member, time='Year.latest')
        if not rows:
            return None, None
        return to_number(rows[0].get(measure)), to_integer(rows[0].get('Year'))

    async def county_metrics(self, fips_code: str) -> Optional[DataUsaCountyMetrics]:
        member = county_code(fips_code)
        if not member:
            return None

        population, income, value, poverty, crime = await asyncio.gather(
            self.series_pair(*POPULATION, member),
            self.series_pair(*HOUSEHOLD_INCOME, member),
            self.series_pair(*PROPERTY_VALUE, member),
            self.series_pair(*POVERTY_POPULATION, member),
            self.latest_violent_crime(member),
        )
        violent_crime, crime_year = crime

        return DataUsaCountyMetrics(
            population=population,
            household_income=income,
            property_value=value,
            poverty_population=poverty,
            violent_crime=violent_crime,
            crime_year=crime_year,
        )
