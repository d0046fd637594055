"""
ReportAllUSA parcels adapter.

Parcel fields are read from the declared result paths first. ReportAllUSA
county feeds vary in column naming, so a bounded pattern search over the
payload fills whatever the declared paths miss.
"""

import re
from typing import Any, Optional, Sequence, Tuple

import structlog

from ..schemas import Financials, LookupContext, LookupSource, NormalizedResult, PropertyIdentity
from ..utils.payload_search import find_first, first_path_value
from ..utils.values import (
    calculate_millage,
    normalize_apn,
    normalize_fips,
    normalize_text,
    to_integer,
    to_number,
)
from .base import SOURCE_PHRASES, ProviderAdapter, with_snapshot

logger = structlog.get_logger(__name__)

PARCELS_ENDPOINT = "https://reportallusa.com/api/parcels"
SPATIAL_SRID = 4326

APN_PATHS = ('results.0.parcel_id', 'results.0.apn', 'results.0.parcel_number', 'results.0.alt_parcel_id')
OWNER_PATHS = ('results.0.owner', 'results.0.owner_name', 'results.0.owner1')
ASSESSED_PATHS = ('results.0.assessed_val_tot', 'results.0.assessed_value')
MARKET_PATHS = ('results.0.mkt_val_tot', 'results.0.market_value')
ACREAGE_PATHS = ('results.0.acreage_deeded', 'results.0.acreage_calc', 'results.0.acreage')
PROPERTY_TYPE_PATHS = ('results.0.land_use_class', 'results.0.land_use_code')
YEAR_BUILT_PATHS = ('results.0.year_built',)
SALE_PRICE_PATHS = ('results.0.sale_price',)
SALE_DATE_PATHS = ('results.0.trans_date', 'results.0.sale_date')

APN_KEY_PATTERNS = ('apn', 'parcel', 'parcelnumber', 'parcelid', 'assessorid', 'formattedapn')
ASSESSED_PATTERNS = ('assessed', 'assessedvalue', 'assessmentvalue')
MARKET_PATTERNS = ('marketvalue', 'mktvaltot', 'fairmarketvalue', 'fmv')
TAX_AMOUNT_PATTERNS = ('taxamount', 'taxtotal', 'totaltax', 'taxes', 'taxdue')
TAX_YEAR_PATTERNS = ('taxyear',)

OWNER_KEY = re.compile(r'(ownername|owner\d*name|primaryowner|secondaryowner|owner1|owner2)')
NAME_KEY = re.compile(r'(name|fullname|displayname|firstname|lastname)')
OWNER_BLOCKLIST = re.compile(r'(mail|address|city|state|zip|postal|phone|email|id|type|careof|company)')
LOOKUP_KEY_NOISE = re.compile(r'[^a-z0-9]')


def lookup_key(key: str) -> str:
    return LOOKUP_KEY_NOISE.sub('', key.lower())


def has_results(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    results = payload.get('results')
    return bool(results) if isinstance(results, list) else bool(payload)


def find_apn(payload: Any) -> Optional[str]:
    apn = normalize_apn(first_path_value(payload, APN_PATHS))
    if apn:
        return apn
    return find_first(
        payload,
        lambda key, _path: any(pattern in lookup_key(key) for pattern in APN_KEY_PATTERNS),
        lambda value: normalize_apn(value) if isinstance(value, (str, int)) else None,
    )


def find_owner(payload: Any) -> Optional[str]:
    owner = normalize_text(first_path_value(payload, OWNER_PATHS))
    if owner:
        return owner

    def is_owner_key(key: str, path: Tuple[str, ...]) -> bool:
        key = lookup_key(key)
        if OWNER_BLOCKLIST.search(key):
            return False
        in_owner_block = any('owner' in segment for segment in path)
        return bool(OWNER_KEY.search(key)) or 'owner' in key or (in_owner_block and bool(NAME_KEY.search(key)))

    return find_first(payload, is_owner_key, lambda value: normalize_text(value) if isinstance(value, str) else None)


def find_number(payload: Any, paths: Sequence[str], patterns: Sequence[str], require_tax_context: bool = False) -> Optional[float]:
    value = to_number(first_path_value(payload, paths)) if paths else None
    if value is not None:
        return value

    def matches(key: str, path: Tuple[str, ...]) -> bool:
        key = lookup_key(key)
        if not any(pattern in key for pattern in patterns):
            return False
        return not require_tax_context or any('tax' in segment for segment in path + (key,))

    return find_first(payload, matches, to_number)


def find_tax_year(payload: Any) -> Optional[int]:
    explicit = find_number(payload, (), TAX_YEAR_PATTERNS)
    if explicit is not None:
        return to_integer(explicit)
    return to_integer(find_number(payload, (), ('year',), require_tax_context=True))


class ReportAllUsaAdapter(ProviderAdapter):
    provider_id = "reportallusa"
    display_name = "ReportAllUSA"
    label = "ReportallUSA API"
    credential = "REPORTALLUSA_CLIENT"

    async def fetch(self, params: dict, stage: str) -> Any:
        payload = await self.http.get_json(
            PARCELS_ENDPOINT,
            params={'client': self.require_key(), **params},
            provider=self.provider_id,
            stage=stage,
        )
        return payload if has_results(payload) else None

    def normalize(self, payload: Any, context: LookupContext, source: LookupSource) -> Optional[NormalizedResult]:
        apn = find_apn(payload)
        if not apn:
            return None

        assessed_value = find_number(payload, ASSESSED_PATHS, ASSESSED_PATTERNS)
        market_value = find_number(payload, MARKET_PATHS, MARKET_PATTERNS)
        tax_amount = find_number(payload, (), TAX_AMOUNT_PATTERNS, require_tax_context=True)
        tax_year = find_tax_year(payload)
        has_tax_fields = any(value is not None for value in (assessed_value, market_value, tax_amount, tax_year))

        identity = PropertyIdentity(
            address=context.address,
            apn=apn,
            assessor_id=apn,
            fips_code=normalize_fips(context.fips_code),
            owner=find_owner(payload),
            county=context.county,
            city=context.city,
            state=context.state,
            zip_code=context.zip_code,
            property_type=normalize_text(first_path_value(payload, PROPERTY_TYPE_PATHS)),
            year_built=to_integer(first_path_value(payload, YEAR_BUILT_PATHS)),
            acreage=to_number(first_path_value(payload, ACREAGE_PATHS)),
        )
        financials = Financials(
            source="ReportAllUSA",
            market_value=market_value,
            assessed_value=assessed_value,
            tax_amount=tax_amount,
            tax_prev_year_amount=tax_amount,
            tax_year=tax_year,
            millage_rate=calculate_millage(tax_amount, assessed_value),
            last_sale_date=normalize_text(first_path_value(payload, SALE_DATE_PATHS)),
            last_sale_price=to_number(first_path_value(payload, SALE_PRICE_PATHS)),
        )

        if has_tax_fields:
            message = f"ReportAllUSA: APN found via {SOURCE_PHRASES[source]} and taxes extracted."
        else:
            message = "ReportAllUSA: APN found, but tax financial fields are not present in provider response."

        result = NormalizedResult(
            apn_found=True,
            apn_lookup_source=source,
            apn_value=apn,
            assessor_id=apn,
            property_identity=identity,
            financials=financials,
            source_provider=self.provider_id,
            message=message,
        )
        return with_snapshot(result)

    async def lookup_by_parcel(self, context: LookupContext) -> Optional[NormalizedResult]:
        params = {'v': 2, 'county_id': normalize_fips(context.fips_code), 'apn': context.apn}
        payload = await self.fetch(params, stage="apn_lookup")
        return self.normalize(payload, context, LookupSource.APN) if payload else None

    async def lookup_by_address(self, context: LookupContext) -> Optional[NormalizedResult]:
        county_id = normalize_fips(context.fips_code)
        if not county_id:
            logger.info("reportallusa_address_needs_fips")
            return None
        payload = await self.fetch({'v': 2, 'county_id': county_id, 'address': context.address}, stage="address_lookup")
        return self.normalize(payload, context, LookupSource.ADDRESS) if payload else None

    async def lookup_by_coordinates(self, context: LookupContext) -> Optional[NormalizedResult]:
        params = {
            'v': 9,
            'spatial_intersect': f"POINT({context.lng} {context.lat})",
            'si_srid': SPATIAL_SRID,
        }
        payload = await self.fetch(params, stage="coordinates_lookup")
        return self.normalize(payload, context, LookupSource.LAT_LNG) if payload else None
