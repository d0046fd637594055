"""
Record shapes shared by every provider.

A NormalizedResult has the same shape no matter which provider produced it,
so callers never branch on provider identity after normalization.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from .utils.values import normalize_text, to_number

CRITICAL_SHORTAGE_THRESHOLD = 30


class LookupIntent(str, Enum):
    STEP1 = "step1"
    TAXES = "taxes"


class LookupSource(str, Enum):
    APN = "apn"
    ADDRESS = "address"
    LAT_LNG = "lat_lng"


class HousingStatus(str, Enum):
    CRITICAL_SHORTAGE = "Critical Shortage"
    STABLE = "Stable"
    UNAVAILABLE = "Unavailable"


class LookupContext(BaseModel):
    """What the caller already knows about the property."""

    intent: LookupIntent = LookupIntent.STEP1
    address: Optional[str] = None
    apn: Optional[str] = None
    fips_code: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    county: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None

    @field_validator('address', 'apn', 'fips_code', 'county', 'city', 'state', 'zip_code', mode='before')
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        return normalize_text(value)

    @field_validator('lat', 'lng', mode='before')
    @classmethod
    def _parse_coordinate(cls, value: Any) -> Optional[float]:
        return to_number(value)

    @field_validator('intent', mode='before')
    @classmethod
    def _default_intent(cls, value: Any) -> LookupIntent:
        if isinstance(value, LookupIntent):
            return value
        return LookupIntent.TAXES if str(value or '').lower() == 'taxes' else LookupIntent.STEP1

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def has_parcel(self) -> bool:
        return bool(self.apn and self.fips_code)


class PropertyIdentity(BaseModel):
    address: Optional[str] = None
    apn: Optional[str] = None
    assessor_id: Optional[str] = None
    fips_code: Optional[str] = None
    owner: Optional[str] = None
    county: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    property_type: Optional[str] = None
    year_built: Optional[int] = None
    acreage: Optional[float] = None
    lot_size_sqft: Optional[float] = None


class Financials(BaseModel):
    """Tax and valuation facts. millage_rate and assessment_ratio are always derived."""

    source: Optional[str] = None
    market_value: Optional[float] = None
    assessed_value: Optional[float] = None
    tax_amount: Optional[float] = None
    tax_prev_year_amount: Optional[float] = None
    tax_year: Optional[int] = None
    millage_rate: Optional[float] = None
    assessment_ratio: Optional[float] = None
    last_sale_date: Optional[str] = None
    last_sale_price: Optional[float] = None
    us_10_year_treasury: Optional[float] = None
    us_10_year_treasury_date: Optional[str] = None


# Fields filled by the area-metrics waterfall, in display order
METRIC_FIELDS = (
    'population',
    'population_change',
    'median_household_income',
    'median_household_income_change',
    'poverty_rate',
    'number_of_employees',
    'number_of_employees_change',
    'median_property_value',
    'median_property_value_change',
    'violent_crime',
    'property_crime',
    'two_br_rent',
)


class AreaMetrics(BaseModel):
    source: Optional[str] = None
    population: Optional[float] = None
    population_change: Optional[float] = None
    median_household_income: Optional[float] = None
    median_household_income_change: Optional[float] = None
    poverty_rate: Optional[float] = None
    number_of_employees: Optional[float] = None
    number_of_employees_change: Optional[float] = None
    median_property_value: Optional[float] = None
    median_property_value_change: Optional[float] = None
    violent_crime: Optional[float] = None
    property_crime: Optional[float] = None
    two_br_rent: Optional[float] = None

    # Open-data extras, only populated by the county endpoint
    poverty_population: Optional[float] = None
    number_of_businesses: Optional[float] = None
    data_year: Optional[int] = None
    crime_year: Optional[int] = None

    def has_any_metric(self) -> bool:
        return any(getattr(self, name) is not None for name in METRIC_FIELDS)


def housing_status(units_per_100: Optional[float]) -> HousingStatus:
    if units_per_100 is None:
        return HousingStatus.UNAVAILABLE
    if units_per_100 < CRITICAL_SHORTAGE_THRESHOLD:
        return HousingStatus.CRITICAL_SHORTAGE
    return HousingStatus.STABLE


class HousingCrisisMetrics(BaseModel):
    source: Optional[str] = None
    eli_renter_households: Optional[float] = None
    affordable_units_per_100: Optional[float] = None
    total_units: Optional[float] = None

    @computed_field
    @property
    def status(self) -> HousingStatus:
        return housing_status(self.affordable_units_per_100)


class NormalizedResult(BaseModel):
    apn_found: bool = False
    apn_lookup_source: Optional[LookupSource] = None
    apn_value: Optional[str] = None
    assessor_id: Optional[str] = None
    property_identity: PropertyIdentity = Field(default_factory=PropertyIdentity)
    financials: Financials = Field(default_factory=Financials)
    demographics_economics: AreaMetrics = Field(default_factory=AreaMetrics)
    housing_crisis_metrics: HousingCrisisMetrics = Field(default_factory=HousingCrisisMetrics)
    demographics_details: Optional[Dict[str, Any]] = None
    api_snapshot: Dict[str, Any] = Field(default_factory=dict)
    source_provider: str
    message: str = ""

    @classmethod
    def empty(cls, provider: str, message: str) -> "NormalizedResult":
        return cls(source_provider=provider, message=message)


@dataclass
class PropertyCandidate:
    """Lightweight projection used only while disambiguating."""

    index: int
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    one_line: Optional[str] = None
    apn: Optional[str] = None
    attom_id: Optional[str] = None
    property_type: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def address_text(self) -> str:
        if self.one_line:
            return self.one_line
        parts = [self.address_line1, self.city, self.state, self.zip_code]
        return ', '.join(part for part in parts if part)

    def to_prompt_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def prompt_payload(candidates: List[PropertyCandidate]) -> List[Dict[str, Any]]:
    return [candidate.to_prompt_dict() for candidate in candidates]
