"""
Area-metrics waterfall.

Tiers are consulted in a fixed order and each one only fills fields that
are still gaps after the tiers before it:

    1. ATTOM          - fields embedded in the resolved property record
    2. ATTOM Community - the community endpoint for the property's area
    3. US Census API  - ACS 5-year county profile, current and prior year
    4. DataUSA Tesseract + Census CBP + HUD CHAS - county endpoint only

A magnitude is a gap when it is None or 0; a percent change is a gap only
when it is None, since 0% is a real answer. The ``source`` label is the last
tier that actually wrote a field.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from ..providers.attom_client import AttomClient
from ..providers.http import ProviderHttpClient
from ..schemas import METRIC_FIELDS, AreaMetrics, HousingCrisisMetrics
from ..utils.payload_search import get_path
from ..utils.values import calculate_percent_change, normalize_fips, pick_number, to_percent
from .census import CensusClient, CensusCountyMetrics
from .community import community_metrics, fetch_community
from .datausa import DataUsaClient, county_code
from .fips import FipsResolution, FipsResolver
from .hud_chas import SOURCE_LABEL as HUD_SOURCE_LABEL, HudChasTable, get_hud_chas_table

logger = structlog.get_logger(__name__)

TIER_ATTOM = "ATTOM"
TIER_COMMUNITY = "ATTOM Community"
TIER_CENSUS = "US Census API"
TIER_OPEN_DATA = "DataUSA Tesseract + Census CBP + HUD CHAS"

# Declared aliases for metrics ATTOM sometimes embeds in the property record
ATTOM_METRIC_PATHS = {
    'population': (
        'demographics.population', 'demographics.population.total', 'demographics.population.population',
        'area.census.population', 'area.census.pop', 'area.census.totpop',
    ),
    'population_change': (
        'demographics.population.change', 'demographics.populationChange',
        'area.census.populationChange', 'area.census.popchg',
    ),
    'median_household_income': (
        'demographics.income.median', 'demographics.income.medianHouseholdIncome',
        'area.census.medianIncome', 'area.census.medincome',
    ),
    'median_household_income_change': (
        'demographics.income.medianChange', 'demographics.income.medianHouseholdIncomeChange',
        'area.census.medianIncomeChange', 'area.census.medincomechange',
    ),
    'poverty_rate': ('demographics.poverty.rate', 'demographics.povertyRate', 'area.census.povertyRate'),
    'number_of_employees': (
        'demographics.employment.employed', 'demographics.employment.employees',
        'area.census.employment', 'area.census.employed',
    ),
    'number_of_employees_change': (
        'demographics.employment.change', 'demographics.employmentChange', 'area.census.employmentChange',
    ),
    'median_property_value': (
        'demographics.homeValue.median', 'demographics.homeValue.medianValue',
        'area.census.medianHomeValue', 'area.census.medhomevalue',
    ),
    'median_property_value_change': (
        'demographics.homeValue.change', 'demographics.homeValueChange',
        'area.census.medianHomeValueChange', 'area.census.medhomevaluechange',
    ),
    'violent_crime': (
        'area.crime.violent', 'area.crime.violentCrime',
        'demographics.crime.violent', 'demographics.crime.violentCrime',
    ),
    'property_crime': (
        'area.crime.property', 'area.crime.propertyCrime',
        'demographics.crime.property', 'demographics.crime.propertyCrime',
    ),
    'two_br_rent': (
        'demographics.rent.twoBr', 'demographics.rent.twoBedroom',
        'demographics.rent.median2br', 'area.census.rent2br',
    ),
}


def is_gap(field_name: str, value: Optional[float]) -> bool:
    if field_name.endswith('_change'):
        return value is None
    return value is None or value == 0


def attom_payload_metrics(record: Optional[Dict[str, Any]]) -> Dict[str, Optional[float]]:
    if not isinstance(record, dict):
        return {}
    values = {
        field_name: pick_number(*(get_path(record, path) for path in paths))
        for field_name, paths in ATTOM_METRIC_PATHS.items()
    }
    # Sometimes a fraction here; the census and open-data tiers already report percents
    values['poverty_rate'] = to_percent(values['poverty_rate'])
    return values


def census_tier_metrics(
    current: Optional[CensusCountyMetrics],
    previous: Optional[CensusCountyMetrics],
) -> Dict[str, Optional[float]]:
    if current is None:
        return {}

    values = {
        'population': current.population,
        'median_household_income': current.median_household_income,
        'poverty_rate': current.poverty_rate,
        'number_of_employees': current.employed,
        'median_property_value': current.median_property_value,
        'two_br_rent': current.two_br_rent,
    }
    if previous is not None:
        values.update({
            'population_change': calculate_percent_change(current.population, previous.population),
            'median_household_income_change': calculate_percent_change(
                current.median_household_income, previous.median_household_income
            ),
            'number_of_employees_change': calculate_percent_change(current.employed, previous.employed),
            'median_property_value_change': calculate_percent_change(
                current.median_property_value, previous.median_property_value
            ),
        })
    return values


class MetricsWaterfall:
    """Accumulates metric fields tier by tier without ever overwriting a filled field."""

    def __init__(self):
        self.values: Dict[str, Optional[float]] = dict.fromkeys(METRIC_FIELDS)
        self.source: Optional[str] = None
        self.contributors: List[str] = []

    def gaps(self) -> List[str]:
        return [name for name in METRIC_FIELDS if is_gap(name, self.values[name])]

    def has_gaps(self) -> bool:
        return bool(self.gaps())

    def fill(self, tier: str, candidates: Dict[str, Optional[float]]) -> List[str]:
        """Write ``candidates`` into the gaps; returns the fields this tier wrote"""
        written = []
        for name in METRIC_FIELDS:
            value = candidates.get(name)
            if is_gap(name, self.values[name]) and not is_gap(name, value):
                self.values[name] = value
                written.append(name)

        if written:
            self.source = tier
            self.contributors.append(tier)
        logger.debug("metrics_tier_applied", tier=tier, written=written)
        return written

    def to_area_metrics(self, **extras) -> AreaMetrics:
        return AreaMetrics(source=self.source, **self.values, **extras)


@dataclass
class AreaReport:
    metrics: AreaMetrics
    housing: HousingCrisisMetrics
    fips: FipsResolution
    community: Optional[Dict[str, Any]] = None


class CountyMetricsReport(BaseModel):
    """County-only metrics for a bare FIPS code."""

    fips_code: Optional[str] = None
    county_code: Optional[str] = None
    metrics: AreaMetrics = Field(default_factory=AreaMetrics)
    housing: HousingCrisisMetrics = Field(default_factory=HousingCrisisMetrics)
    census_business_year: Optional[int] = None

    @property
    def found(self) -> bool:
        housing = self.housing
        return self.metrics.has_any_metric() or self.metrics.number_of_businesses is not None or any(
            value is not None for value in (housing.eli_renter_households, housing.affordable_units_per_100, housing.total_units)
        )

    def to_response(self) -> Dict[str, Any]:
        metrics = self.metrics
        payload = metrics.model_dump(exclude={'data_year'})
        payload.update({
            'county_code': self.county_code,
            'fips_code': self.fips_code,
            'year': metrics.data_year,
            'census_business_year': self.census_business_year,
            'eli_renter_households': self.housing.eli_renter_households,
            'units_per_100': self.housing.affordable_units_per_100,
            'total_units': self.housing.total_units,
            'housing_status': self.housing.status.value,
        })
        return payload


class AreaMetricsAggregator:
    """Resolves the county and runs the metrics waterfall for one property."""

    def __init__(
        self,
        http: ProviderHttpClient,
        *,
        attom: Optional[AttomClient] = None,
        census: Optional[CensusClient] = None,
        datausa: Optional[DataUsaClient] = None,
        fips_resolver: Optional[FipsResolver] = None,
        hud_table: Optional[HudChasTable] = None,
    ):
        self.http = http
        self.attom = attom
        self.census = census or CensusClient(http)
        self.datausa = datausa or DataUsaClient(http)
        self.fips_resolver = fips_resolver or FipsResolver(http, self.census)
        self.hud_table = hud_table

    def _hud(self) -> HudChasTable:
        return self.hud_table or get_hud_chas_table()

    def housing_metrics(self, fips_code: Optional[str]) -> HousingCrisisMetrics:
        hud = self._hud().lookup(fips_code) if fips_code else None
        if hud is None:
            return HousingCrisisMetrics(source=HUD_SOURCE_LABEL)
        return HousingCrisisMetrics(
            source=HUD_SOURCE_LABEL,
            eli_renter_households=hud.eli_renter_households,
            affordable_units_per_100=hud.units_per_100,
            total_units=hud.total_units,
        )

    async def fill_census(self, waterfall: MetricsWaterfall, fips_code: str) -> List[str]:
        year = self.census.acs_year
        current, previous = await asyncio.gather(
            self.census.county_metrics(fips_code, year),
            self.census.county_metrics(fips_code, year - 1),
        )
        return waterfall.fill(TIER_CENSUS, census_tier_metrics(current, previous))

    async def fill_open_data(self, waterfall: MetricsWaterfall, fips_code: str) -> Dict[str, Any]:
        """Tier 4; returns the county extras that sit outside the waterfall fields"""
        year = self.census.acs_year
        datausa, (employees, businesses), (prior_employees, _) = await asyncio.gather(
            self.datausa.county_metrics(fips_code),
            self.census.business_patterns(fips_code, year),
            self.census.business_patterns(fips_code, year - 1),
        )
        hud = self._hud().lookup(fips_code)

        candidates: Dict[str, Optional[float]] = {
            'number_of_employees': employees,
            'number_of_employees_change': calculate_percent_change(employees, prior_employees),
            'two_br_rent': hud.two_br_rent if hud else None,
        }
        extras: Dict[str, Any] = {'number_of_businesses': businesses}

        if datausa is not None:
            candidates.update({
                'population': datausa.population.latest,
                'population_change': datausa.population.change,
                'median_household_income': datausa.household_income.latest,
                'median_household_income_change': datausa.household_income.change,
                'median_property_value': datausa.property_value.latest,
                'median_property_value_change': datausa.property_value.change,
                'poverty_rate': datausa.poverty_rate,
                'violent_crime': datausa.violent_crime,
                'property_crime': datausa.property_crime,
            })
            extras.update({
                'poverty_population': datausa.poverty_population.latest,
                'data_year': datausa.year,
                'crime_year': datausa.crime_year,
            })

        waterfall.fill(TIER_OPEN_DATA, candidates)
        return extras

    async def aggregate(
        self,
        *,
        record: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        fips_code: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        county: Optional[str] = None,
        state: Optional[str] = None,
        city: Optional[str] = None,
        include_open_data: bool = False,
    ) -> AreaReport:
        """
        Area metrics for a resolved property.

        Args:
            record: Merged property record (tier 1)
            payload: Raw lookup payload, searched for a community geoIdV4
            fips_code: County FIPS already read from the record, if any
            include_open_data: Also consult tier 4 for remaining gaps
        """
        fips = await self.fips_resolver.resolve(
            payload_fips=fips_code, payload=record, lat=lat, lng=lng, state=state, county=county
        )

        waterfall = MetricsWaterfall()
        waterfall.fill(TIER_ATTOM, attom_payload_metrics(record))

        community = None
        if waterfall.has_gaps() and self.attom is not None:
            community = await fetch_community(
                self.attom, record=record, payload=payload, county=county, state=state, city=city
            )
            waterfall.fill(TIER_COMMUNITY, community_metrics(community))

        if waterfall.has_gaps() and fips.found:
            await self.fill_census(waterfall, fips.fips_code)

        extras: Dict[str, Any] = {}
        if include_open_data and waterfall.has_gaps() and fips.found:
            extras = await self.fill_open_data(waterfall, fips.fips_code)

        logger.info(
            "area_metrics_aggregated",
            fips=fips.fips_code,
            fips_source=fips.source,
            source=waterfall.source,
            contributors=waterfall.contributors,
            gaps=len(waterfall.gaps()),
        )
        return AreaReport(
            metrics=waterfall.to_area_metrics(**extras),
            housing=self.housing_metrics(fips.fips_code),
            fips=fips,
            community=community,
        )

    async def resolve_county(self, fips_code: Optional[str]) -> CountyMetricsReport:
        fips = normalize_fips(fips_code)
        if not fips:
            return CountyMetricsReport()

        waterfall = MetricsWaterfall()
        await self.fill_census(waterfall, fips)
        extras: Dict[str, Any] = {}
        if waterfall.has_gaps():
            extras = await self.fill_open_data(waterfall, fips)

        return CountyMetricsReport(
            fips_code=fips,
            county_code=county_code(fips),
            metrics=waterfall.to_area_metrics(**extras),
            housing=self.housing_metrics(fips),
            census_business_year=self.census.acs_year if extras.get('number_of_businesses') is not None else None,
        )


async def resolve_area_metrics(
    fips_code: Optional[str],
    http: Optional[ProviderHttpClient] = None,
    hud_table: Optional[HudChasTable] = None,
) -> CountyMetricsReport:
    """
    County metrics for a bare FIPS code.

    Never raises for missing data: a county nobody knows about comes back
    with every metric None and ``found`` False.
    """
    if http is not None:
        return await AreaMetricsAggregator(http, hud_table=hud_table).resolve_county(fips_code)

    async with ProviderHttpClient() as owned:
        return await AreaMetricsAggregator(owned, hud_table=hud_table).resolve_county(fips_code)
