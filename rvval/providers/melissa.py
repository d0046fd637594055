"""
Melissa Property adapter.

Lookups go to the LookupProperty endpoint by APN+FIPS, by address parts, or
by MelissaAddressKey (MAK) obtained from a reverse geocode of the
coordinates. Each lookup first asks for the column groups we map and
retries without the column filter when that returns no record.
"""

from typing import Any, Dict, Optional

import structlog

from ..schemas import Financials, LookupContext, LookupSource, NormalizedResult, PropertyIdentity
from ..utils.address_matcher import get_address_matcher
from ..utils.payload_search import find_first
from ..utils.values import (
    apns_match,
    calculate_assessment_ratio,
    calculate_millage,
    normalize_apn,
    normalize_fips,
    normalize_text,
    pick_number,
    to_integer,
    to_number,
)
from .base import ProviderAdapter, with_snapshot
from .http import ProviderHttpClient

logger = structlog.get_logger(__name__)

LOOKUP_ENDPOINT = "https://property.melissadata.net/v4/WEB/LookupProperty"
REVERSE_GEOCODE_ENDPOINT = "https://reversegeo.melissadata.net/v3/web/ReverseGeoCode/doLookup"
COLUMN_GROUPS = "GRP_PARCEL,GRP_TAX,GRP_PRIMARY_OWNER,GRP_PROPERTY_USE_INFO,GRP_SALE_INFO,GRP_PROPERTY_SIZE"
REVERSE_GEOCODE_DISTANCE = 0.1

CONSTRAINT_MISMATCH_MESSAGE = "Melissa returned data, but APN/FIPS did not match the selected property."


def first_record(payload: Any) -> Optional[Dict[str, Any]]:
    records = payload.get('Records') if isinstance(payload, dict) else None
    if isinstance(records, list) and records and isinstance(records[0], dict):
        return records[0]
    return None


class MelissaAdapter(ProviderAdapter):
    provider_id = "melissa"
    display_name = "Melissa"
    label = "Melissa Api"
    credential = "MELISSA_API"

    def __init__(self, http: ProviderHttpClient, api_key: Optional[str] = None):
        super().__init__(http, api_key)
        self.rejected = False

    async def _fetch(self, params: Dict[str, Any], stage: str) -> Optional[Dict[str, Any]]:
        base = {'id': self.require_key(), 'format': 'json', **params}
        payload = await self.http.get_json(
            LOOKUP_ENDPOINT, params={**base, 'cols': COLUMN_GROUPS}, provider=self.provider_id, stage=stage
        )
        if first_record(payload):
            return payload

        payload = await self.http.get_json(LOOKUP_ENDPOINT, params=base, provider=self.provider_id, stage=f"{stage}_all_columns")
        return payload if first_record(payload) else None

    async def reverse_address_key(self, lat: float, lng: float) -> Optional[str]:
        params = {
            'id': self.require_key(),
            'format': 'json',
            'lat': lat,
            'long': lng,
            'dist': REVERSE_GEOCODE_DISTANCE,
        }
        payload = await self.http.get_json(
            REVERSE_GEOCODE_ENDPOINT, params=params, provider=self.provider_id, stage="reverse_geocode"
        )
        return find_first(payload, lambda key, _path: key == 'melissaaddresskey', normalize_text)

    def matches_constraints(self, record: Dict[str, Any], context: LookupContext) -> bool:
        parcel = record.get('Parcel') or {}
        if context.apn:
            record_apn = parcel.get('FormattedAPN') or parcel.get('UnformattedAPN')
            if not apns_match(record_apn, context.apn) and not apns_match(parcel.get('UnformattedAPN'), context.apn):
                return False
        if context.fips_code:
            record_fips = normalize_fips(parcel.get('FIPSCode'))
            if record_fips and record_fips != normalize_fips(context.fips_code):
                return False
        return True

    def normalize(self, payload: Dict[str, Any], context: LookupContext, source: LookupSource) -> NormalizedResult:
        record = first_record(payload) or {}
        parcel = record.get('Parcel') or {}
        tax = record.get('Tax') or {}
        sale = record.get('SaleInfo') or {}
        use = record.get('PropertyUseInfo') or {}
        size = record.get('PropertySize') or {}

        apn = normalize_apn(parcel.get('FormattedAPN') or parcel.get('UnformattedAPN'))
        assessor_id = normalize_text(parcel.get('UnformattedAPN') or apn)
        market_value = to_number(tax.get('MarketValueTotal'))
        assessed_value = to_number(tax.get('AssessedValueTotal'))
        tax_amount = to_number(tax.get('TaxBilledAmount'))
        property_type = normalize_text(use.get('PropertyUseType') or use.get('PropertyUseGroup'))

        identity = PropertyIdentity(
            address=context.address,
            apn=apn,
            assessor_id=assessor_id,
            fips_code=normalize_fips(parcel.get('FIPSCode') or context.fips_code),
            owner=normalize_text((record.get('PrimaryOwner') or {}).get('Name1Full')),
            county=context.county,
            city=context.city,
            state=context.state,
            zip_code=context.zip_code,
            property_type=property_type,
            year_built=to_integer(use.get('YearBuilt')),
            acreage=to_number(size.get('AreaLotAcres')),
            lot_size_sqft=to_number(size.get('AreaLotSF')),
        )
        financials = Financials(
            source="Melissa",
            market_value=market_value,
            assessed_value=assessed_value,
            tax_amount=tax_amount,
            tax_prev_year_amount=tax_amount,
            tax_year=to_integer(tax.get('TaxFiscalYear')),
            millage_rate=calculate_millage(tax_amount, assessed_value),
            assessment_ratio=calculate_assessment_ratio(assessed_value, market_value),
            last_sale_date=normalize_text(sale.get('DeedLastSaleDate') or sale.get('AssessorLastSaleDate')),
            last_sale_price=pick_number(
                sale.get('DeedLastSalePrice'),
                sale.get('AssessorLastSaleAmount'),
                sale.get('AssessorPriorSaleAmount'),
            ),
        )

        result = NormalizedResult(
            apn_found=bool(apn),
            apn_lookup_source=source,
            apn_value=apn,
            assessor_id=assessor_id,
            property_identity=identity,
            financials=financials,
            source_provider=self.provider_id,
            message=self.found_message(source) if apn else "Melissa: no APN found.",
        )
        return with_snapshot(result)

    def _checked(self, payload: Optional[Dict[str, Any]], context: LookupContext, source: LookupSource) -> Optional[NormalizedResult]:
        record = first_record(payload)
        if record is None:
            return None
        if not self.matches_constraints(record, context):
            logger.info("melissa_constraint_mismatch", source=source.value)
            self.rejected = True
            return None
        return self.normalize(payload, context, source)

    def can_lookup_parcel(self, context: LookupContext) -> bool:
        return bool(context.apn)

    async def lookup_by_parcel(self, context: LookupContext) -> Optional[NormalizedResult]:
        payload = await self._fetch(
            {'apn': context.apn, 'fips': normalize_fips(context.fips_code)}, stage="apn_lookup"
        )
        return self._checked(payload, context, LookupSource.APN)

    async def lookup_by_address(self, context: LookupContext) -> Optional[NormalizedResult]:
        parts = get_address_matcher().split_address_parts(context.address)
        params = {
            'a1': context.address or parts.line1,
            'city': context.city or parts.city,
            'state': context.state or parts.state,
            'postal': context.zip_code or parts.zip_code,
        }
        payload = await self._fetch(params, stage="address_lookup")
        return self._checked(payload, context, LookupSource.ADDRESS)

    async def lookup_by_coordinates(self, context: LookupContext) -> Optional[NormalizedResult]:
        address_key = await self.reverse_address_key(context.lat, context.lng)
        if not address_key:
            return None
        payload = await self._fetch({'mak': address_key}, stage="mak_lookup")
        return self._checked(payload, context, LookupSource.LAT_LNG)

    async def lookup(self, context: LookupContext) -> NormalizedResult:
        result = await super().lookup(context)
        if not result.apn_found and result.apn_lookup_source is None and self.rejected:
            return NormalizedResult.empty(self.provider_id, CONSTRAINT_MISMATCH_MESSAGE)
        return result
