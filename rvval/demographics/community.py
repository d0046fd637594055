"""
ATTOM community tier.

The community endpoint is keyed by a geoIdV4. That ID is found, in order,
at the record's declared paths, by a bounded search of the lookup payload
and record, and finally through a name-based location lookup using
"{county}, {state}" (or "{city}, {state}" when the county is unknown).
"""

from typing import Any, Dict, Optional

import structlog

from ..providers.attom_client import AttomClient
from ..utils.payload_search import find_geo_id_v4, first_path_value, get_path
from ..utils.values import average, pick_number, to_percent

logger = structlog.get_logger(__name__)

GEO_ID_PATHS = ("location.geoIdV4", "area.geoIdV4", "geoIdV4")
LOCATION_LIST_KEYS = ('location', 'locations', 'Location', 'Locations', 'result', 'results', 'data')


def geo_id_from_location_lookup(payload: Any, preferred_type: Optional[str] = None) -> Optional[str]:
    """geoIdV4 from a location-lookup response, preferring entries of ``preferred_type``"""
    if not isinstance(payload, dict):
        return None

    block = None
    for key in LOCATION_LIST_KEYS:
        if payload.get(key):
            block = payload[key]
            break

    if isinstance(block, list):
        entries = [item for item in block if isinstance(item, dict)]
    elif isinstance(block, dict):
        entries = [item for item in block.values() if isinstance(item, dict)]
    else:
        entries = []

    if not entries:
        return find_geo_id_v4(payload)

    if preferred_type:
        wanted = preferred_type.lower()
        for item in entries:
            kind = str(item.get('geographyTypeName') or item.get('type') or item.get('locationType') or '').lower()
            if wanted in kind and item.get('geoIdV4'):
                return str(item['geoIdV4'])

    for item in entries:
        if item.get('geoIdV4'):
            return str(item['geoIdV4'])

    return find_geo_id_v4(payload)


def _has_demographics(community: Optional[Dict[str, Any]]) -> bool:
    return bool(isinstance(community, dict) and get_path(community, 'community.demographics'))


async def fetch_community(
    client: AttomClient,
    *,
    record: Optional[Dict[str, Any]] = None,
    payload: Optional[Dict[str, Any]] = None,
    county: Optional[str] = None,
    state: Optional[str] = None,
    city: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    The ``community`` block for the property's area, or None.

    Args:
        record: Resolved property record
        payload: Raw lookup payload that produced the record
    """
    geo_id = first_path_value(record or {}, GEO_ID_PATHS) or find_geo_id_v4(payload) or find_geo_id_v4(record)
    community = await client.community(str(geo_id)) if geo_id else None

    if not geo_id or not _has_demographics(community):
        name = ', '.join(part for part in (county, state) if part)
        if not county:
            name = ', '.join(part for part in (city, state) if part)

        if name:
            lookup = await client.location_lookup(name)
            lookup_geo_id = geo_id_from_location_lookup(lookup, 'county' if county else None)
            if lookup_geo_id:
                geo_id = lookup_geo_id
                community = await client.community(lookup_geo_id)

    if not isinstance(community, dict):
        logger.info("attom_community_unavailable", geo_id=geo_id)
        return None

    block = community.get('community')
    return block if isinstance(block, dict) else None


def violent_crime_index(crime: Dict[str, Any]) -> Optional[float]:
    """Aggravated-assault index, then a generic violent field, then the mean of four sub-indices"""
    direct = pick_number(
        crime.get('aggravated_Assault_Index'),
        crime.get('violent_Crime_Index'),
        crime.get('violentCrime'),
        crime.get('violent'),
    )
    if direct is not None:
        return direct
    return average(
        pick_number(crime.get('murder_Index')),
        pick_number(crime.get('forcible_Rape_Index')),
        pick_number(crime.get('forcible_Robbery_Index')),
        pick_number(crime.get('aggravated_Assault_Index')),
    )


def property_crime_index(crime: Dict[str, Any]) -> Optional[float]:
    """Motor-vehicle-theft index, then a generic property field, then the mean of three sub-indices"""
    direct = pick_number(
        crime.get('motor_Vehicle_Theft_Index'),
        crime.get('property_Crime_Index'),
        crime.get('propertyCrime'),
        crime.get('property'),
    )
    if direct is not None:
        return direct
    return average(
        pick_number(crime.get('burglary_Index')),
        pick_number(crime.get('larceny_Index')),
        pick_number(crime.get('motor_Vehicle_Theft_Index')),
    )


def community_metrics(community: Optional[Dict[str, Any]]) -> Dict[str, Optional[float]]:
    """Waterfall field values from an ATTOM ``community`` block"""
    if not isinstance(community, dict):
        return {}

    demo = community.get('demographics') or {}
    crime = community.get('crime') or {}

    return {
        'population': pick_number(
            demo.get('population'),
            demo.get('population_2020'),
            demo.get('population_2010'),
            demo.get('population_2000'),
        ),
        'population_change': pick_number(
            demo.get('population_Chg_Pct_2020'),
            demo.get('population_Chg_Pct_2010'),
            demo.get('population_Chg_Pct_2000'),
            demo.get('population_Chg_Pct_5_Yr_Projection'),
        ),
        'median_household_income': pick_number(demo.get('median_Household_Income')),
        'poverty_rate': to_percent(pick_number(demo.get('population_In_Poverty_Pct'), demo.get('population_In_Poverty'))),
        'number_of_employees': pick_number(demo.get('employee_Naics_Cnt'), demo.get('population_Employed_16P')),
        'median_property_value': pick_number(demo.get('housing_Owner_Households_Median_Value')),
        'two_br_rent': pick_number(demo.get('housing_Median_Rent')),
        'violent_crime': violent_crime_index(crime),
        'property_crime': property_crime_index(crime),
    }
