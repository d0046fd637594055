"""
ATTOM Data property API client and payload helpers.

Endpoints used: basicprofile (by address or by APN+FIPS), snapshot (radius
search), detail (by attomId), expandedprofile (by address), plus the v4
community and location-lookup endpoints for area metrics.
"""
from typing import Any, Dict, List, Optional

import structlog

from ..schemas import PropertyCandidate
from ..utils.address_matcher import get_address_matcher
from ..utils.payload_search import first_path_value
from ..utils.values import normalize_apn, normalize_fips, normalize_text, to_number
from .http import ProviderHttpClient

logger = structlog.get_logger(__name__)

ATTOM_PROPERTY_BASE = "https://api.gateway.attomdata.com/propertyapi/v1.0.0/property"
ATTOM_BASIC_ENDPOINT = f"{ATTOM_PROPERTY_BASE}/basicprofile"
ATTOM_DETAIL_ENDPOINT = f"{ATTOM_PROPERTY_BASE}/detail"
ATTOM_SNAPSHOT_ENDPOINT = f"{ATTOM_PROPERTY_BASE}/snapshot"
ATTOM_EXPANDED_ENDPOINT = f"{ATTOM_PROPERTY_BASE}/expandedprofile"
ATTOM_COMMUNITY_ENDPOINT = "https://api.gateway.attomdata.com/v4/neighborhood/community"
ATTOM_LOCATION_LOOKUP_ENDPOINT = "https://api.gateway.attomdata.com/v4/location/lookup"

ATTOM_ID_PATHS = ("identifier.attomId", "identifier.attomid", "attomId", "attomid")
APN_PATHS = ("identifier.apn", "identifier.apnOrig", "identifier.parcelId")
FIPS_PATHS = (
    "area.county.fips",
    "area.county.fipsCode",
    "area.county.fipsCodeFull",
    "area.county.geoId",
    "area.census.geoid",
    "area.census.fips",
    "identifier.fips",
    "identifier.fipsCode",
    "identifier.countyFips",
    "identifier.fipsCounty",
)
COUNTY_PATHS = ("area.county.name", "area.countyname", "area.countrySec.name", "area.countrySecondary.name")
OWNER_PATHS = ("owner.name", "owner.owner1FullName", "owner.ownerName", "owner.owner1.fullName")


class AttomClient:
    """Thin async wrapper over the ATTOM endpoints; every call returns a payload or None."""

    PROVIDER = "attom"

    def __init__(self, http: ProviderHttpClient, api_key: str, geo_radius_miles: float = 2.0):
        self.http = http
        self.api_key = api_key
        self.geo_radius_miles = geo_radius_miles

    def _headers(self) -> Dict[str, str]:
        return {'apikey': self.api_key, 'Accept': 'application/json'}

    async def _get(self, url: str, params: Dict[str, Any], stage: str) -> Optional[Dict[str, Any]]:
        payload = await self.http.get_json(url, params=params, headers=self._headers(), provider=self.PROVIDER, stage=stage)
        return payload if isinstance(payload, dict) else None

    async def basic_profile_by_parcel(self, apn: str, fips: str) -> Optional[Dict[str, Any]]:
        return await self._get(ATTOM_BASIC_ENDPOINT, {'apn': apn, 'fips': fips}, stage="parcel_lookup")

    async def basic_profile_by_address(self, address: str, stage: str = "address_lookup") -> Optional[Dict[str, Any]]:
        lines = get_address_matcher().split_address(address)
        return await self._get(ATTOM_BASIC_ENDPOINT, lines, stage=stage)

    async def snapshot_by_geo(self, lat: float, lng: float) -> Optional[Dict[str, Any]]:
        params = {'latitude': lat, 'longitude': lng, 'radius': self.geo_radius_miles}
        return await self._get(ATTOM_SNAPSHOT_ENDPOINT, params, stage="geo_lookup")

    async def detail(self, attom_id: str) -> Optional[Dict[str, Any]]:
        return await self._get(ATTOM_DETAIL_ENDPOINT, {'attomid': attom_id}, stage="detail_enrichment")

    async def expanded_profile(self, address1: str, address2: str = "") -> Optional[Dict[str, Any]]:
        params = {'address1': address1, 'address2': address2}
        return await self._get(ATTOM_EXPANDED_ENDPOINT, params, stage="expanded_enrichment")

    async def community(self, geo_id: str) -> Optional[Dict[str, Any]]:
        return await self._get(ATTOM_COMMUNITY_ENDPOINT, {'geoIdV4': geo_id}, stage="community")

    async def location_lookup(self, name: str) -> Optional[Dict[str, Any]]:
        return await self._get(ATTOM_LOCATION_LOOKUP_ENDPOINT, {'name': name}, stage="location_lookup")


def extract_properties(payload: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """All property records in an ATTOM response, in provider order."""
    if not isinstance(payload, dict):
        return []
    for key in ('property', 'properties', 'Property'):
        block = payload.get(key)
        if isinstance(block, list):
            return [item for item in block if isinstance(item, dict)]
        if isinstance(block, dict) and block:
            return [block]
    return []


def extract_attom_id(record: Dict[str, Any]) -> Optional[str]:
    return normalize_text(first_path_value(record, ATTOM_ID_PATHS))


def extract_apn(record: Dict[str, Any]) -> Optional[str]:
    return normalize_text(first_path_value(record, APN_PATHS))


def extract_fips(record: Dict[str, Any]) -> Optional[str]:
    """County FIPS straight from the record, left-padded to 5 digits"""
    return normalize_fips(first_path_value(record, FIPS_PATHS))


def extract_county(record: Dict[str, Any]) -> Optional[str]:
    return normalize_text(first_path_value(record, COUNTY_PATHS))


def address_fields(record: Dict[str, Any]) -> Dict[str, str]:
    address = record.get('address') or {}
    return {
        'line1': address.get('line1') or address.get('address1') or address.get('street') or '',
        'city': address.get('locality') or address.get('city') or '',
        'state': address.get('countrySubd') or address.get('state') or '',
        'zip': address.get('postal1') or address.get('zip') or '',
        'one_line': address.get('oneLine') or '',
    }


def one_line_address(record: Dict[str, Any]) -> str:
    fields = address_fields(record)
    if fields['one_line']:
        return fields['one_line']
    return ', '.join(part for part in (fields['line1'], fields['city'], fields['state'], fields['zip']) if part)


def extract_address_lines(record: Dict[str, Any], fallback_address: str = "") -> Dict[str, str]:
    """
    address1/address2 for the expanded-profile call.

    Prefers the resolved record's own parts, falling back to splitting the
    caller's address.
    """
    fields = address_fields(record)
    if fields['line1'] and (fields['city'] or fields['state'] or fields['zip']):
        address2 = ' '.join(part for part in (fields['city'], fields['state'], fields['zip']) if part)
        return {'address1': fields['line1'], 'address2': address2.strip()}

    if fallback_address:
        return get_address_matcher().split_address(fallback_address)

    return {'address1': fields['line1'], 'address2': ''}


def project_candidate(index: int, record: Dict[str, Any]) -> PropertyCandidate:
    fields = address_fields(record)
    location = record.get('location') or {}
    summary = record.get('summary') or {}
    return PropertyCandidate(
        index=index,
        address_line1=normalize_text(fields['line1']),
        city=normalize_text(fields['city']),
        state=normalize_text(fields['state']),
        zip_code=normalize_text(fields['zip']),
        one_line=normalize_text(fields['one_line']),
        apn=normalize_apn(extract_apn(record)),
        attom_id=extract_attom_id(record),
        property_type=normalize_text(summary.get('propclass') or summary.get('propType') or summary.get('propertyType')),
        lat=to_number(location.get('latitude')),
        lng=to_number(location.get('longitude')),
    )


def project_candidates(records: List[Dict[str, Any]]) -> List[PropertyCandidate]:
    return [project_candidate(index, record) for index, record in enumerate(records)]
