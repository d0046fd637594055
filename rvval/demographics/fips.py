"""
County FIPS resolution.

Order, each step only when the previous produced nothing:
1. FIPS-like fields already present in the resolved property payload
2. Census geocoder by coordinates (county GEOID)
3. State abbreviation + county name against the ACS county list
"""

import re
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from ..providers.http import ProviderHttpClient
from ..utils.payload_search import find_first
from ..utils.values import normalize_fips, normalize_text
from .census import CensusClient

logger = structlog.get_logger(__name__)

GEOCODER_URL = "https://geocoding.geo.census.gov/geocoder/geographies/coordinates"

STATE_FIPS = {
    'AL': '01', 'AK': '02', 'AZ': '04', 'AR': '05', 'CA': '06', 'CO': '08', 'CT': '09', 'DE': '10', 'DC': '11',
    'FL': '12', 'GA': '13', 'HI': '15', 'ID': '16', 'IL': '17', 'IN': '18', 'IA': '19', 'KS': '20', 'KY': '21',
    'LA': '22', 'ME': '23', 'MD': '24', 'MA': '25', 'MI': '26', 'MN': '27', 'MS': '28', 'MO': '29', 'MT': '30',
    'NE': '31', 'NV': '32', 'NH': '33', 'NJ': '34', 'NM': '35', 'NY': '36', 'NC': '37', 'ND': '38', 'OH': '39',
    'OK': '40', 'OR': '41', 'PA': '42', 'RI': '44', 'SC': '45', 'SD': '46', 'TN': '47', 'TX': '48', 'UT': '49',
    'VT': '50', 'VA': '51', 'WA': '53', 'WV': '54', 'WI': '55', 'WY': '56',
}

COUNTY_SUFFIX = re.compile(r'\s+(county|parish|borough|census\s+area|municipality)$')
NON_ALNUM_RUN = re.compile(r'[^a-z0-9]+')
FIPS_KEYS = frozenset({'fips', 'fipscode', 'countyfips', 'fipscounty', 'county_fips', 'fips_code'})

SOURCE_PAYLOAD = "Property payload"
SOURCE_GEOCODER = "US Census Geocoder (coordinates)"
SOURCE_COUNTY_NAME = "US Census API (state/county)"


def normalize_county_name(value: Optional[str]) -> str:
    """
    Comparable county name.

    Census NAME values carry the state after a comma ("Sangamon County,
    Illinois"); only the part before the comma is compared.

    Example:
        "St. Mary Parish" -> "st mary"
    """
    name = (value or '').split(',')[0].strip().lower()
    name = COUNTY_SUFFIX.sub('', name)
    return NON_ALNUM_RUN.sub(' ', name).strip()


def resolve_state_fips(state: Optional[str]) -> Optional[str]:
    text = (state or '').strip().upper()
    if text.isdigit() and len(text) <= 2:
        return text.zfill(2)
    return STATE_FIPS.get(text)


def fips_from_payload(payload: Any) -> Optional[str]:
    """Last-resort search for a FIPS-named key anywhere in a payload"""
    def as_fips(value: Any) -> Optional[str]:
        fips = normalize_fips(value)
        return fips if fips and fips != '00000' else None

    return find_first(payload, lambda key, _path: key in FIPS_KEYS, as_fips)


@dataclass
class FipsResolution:
    fips_code: Optional[str] = None
    source: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.fips_code is not None


class FipsResolver:
    """Resolve a 5-digit county FIPS from whatever the caller knows."""

    PROVIDER = "census_geocoder"

    def __init__(self, http: ProviderHttpClient, census: Optional[CensusClient] = None):
        self.http = http
        self.census = census or CensusClient(http)

    async def by_coordinates(self, lat: Optional[float], lng: Optional[float]) -> Optional[str]:
        if lat is None or lng is None:
            return None

        params = {
            'x': lng,
            'y': lat,
            'benchmark': 'Public_AR_Current',
            'vintage': 'Current_Current',
            'format': 'json',
        }
        payload = await self.http.get_json(GEOCODER_URL, params=params, provider=self.PROVIDER, stage="geocode_coordinates")
        if not isinstance(payload, dict):
            return None

        counties = ((payload.get('result') or {}).get('geographies') or {}).get('Counties') or []
        if not counties or not isinstance(counties[0], dict):
            return None
        return normalize_fips(counties[0].get('GEOID'))

    async def by_state_county(self, state: Optional[str], county: Optional[str]) -> Optional[str]:
        state_fips = resolve_state_fips(state)
        target = normalize_county_name(county)
        if not state_fips or not target:
            return None

        for name, county_code in await self.census.county_names(state_fips):
            if normalize_county_name(name) == target:
                return f"{state_fips}{county_code}"

        logger.info("county_name_not_matched", state=state_fips, county=target)
        return None

    async def resolve(
        self,
        *,
        payload_fips: Any = None,
        payload: Any = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        state: Optional[str] = None,
        county: Optional[str] = None,
    ) -> FipsResolution:
        """
        Walk the resolution order and report which step answered.

        Args:
            payload_fips: FIPS already read from the provider's declared paths
            payload: Raw provider record, searched when payload_fips is empty
        """
        fips = normalize_fips(payload_fips) or (fips_from_payload(payload) if payload else None)
        if fips:
            return FipsResolution(fips, SOURCE_PAYLOAD)

        fips = await self.by_coordinates(lat, lng)
        if fips:
            return FipsResolution(fips, SOURCE_GEOCODER)

        fips = await self.by_state_county(normalize_text(state), normalize_text(county))
        if fips:
            return FipsResolution(fips, SOURCE_COUNTY_NAME)

        return FipsResolution()
