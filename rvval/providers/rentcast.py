"""Rentcast property records adapter."""

from typing import Any, Dict, List, Optional

import structlog

from ..schemas import (
    Financials,
    LookupContext,
    LookupIntent,
    LookupSource,
    NormalizedResult,
    PropertyCandidate,
    PropertyIdentity,
)
from ..services.candidate_selector import CandidateSelector
from ..utils.values import (
    SQFT_PER_ACRE,
    calculate_millage,
    combine_state_county_fips,
    normalize_apn,
    normalize_fips,
    normalize_text,
    parse_year_map_latest,
    to_integer,
    to_number,
)
from .base import SOURCE_PHRASES, ProviderAdapter, with_snapshot
from .http import ProviderHttpClient

logger = structlog.get_logger(__name__)

PROPERTIES_ENDPOINT = "https://api.rentcast.io/v1/properties"
SEARCH_RADIUS_MILES = 0.1

TAXES_NEED_ADDRESS = "Rentcast taxes lookup requires a property address."
TAXES_QUERY_FAILED = "Rentcast: unable to query taxes data by address."
TAXES_MISMATCH = "Rentcast match rejected: APN/FIPS mismatch for taxes auto-fill."
TAXES_UNAVAILABLE = "Rentcast: tax financial fields unavailable for APN/FIPS match."


def property_fips(record: Dict[str, Any]) -> Optional[str]:
    return normalize_fips(combine_state_county_fips(record.get('stateFips'), record.get('countyFips')))


def matches_constraints(record: Dict[str, Any], target_apn: Optional[str], target_fips: Optional[str]) -> bool:
    if target_apn and normalize_apn(record.get('assessorID')) != target_apn:
        return False
    if target_fips and property_fips(record) != target_fips:
        return False
    return True


def owner_name(record: Dict[str, Any]) -> Optional[str]:
    owner = record.get('owner') or {}
    names = owner.get('names')
    if isinstance(names, list):
        return normalize_text(' & '.join(str(name) for name in names if name))
    return normalize_text(owner.get('name'))


def project(index: int, record: Dict[str, Any]) -> PropertyCandidate:
    return PropertyCandidate(
        index=index,
        address_line1=normalize_text(record.get('addressLine1')),
        city=normalize_text(record.get('city')),
        state=normalize_text(record.get('state')),
        zip_code=normalize_text(record.get('zipCode')),
        one_line=normalize_text(record.get('formattedAddress')),
        apn=normalize_apn(record.get('assessorID')),
        property_type=normalize_text(record.get('propertyType')),
        lat=to_number(record.get('latitude')),
        lng=to_number(record.get('longitude')),
    )


class RentcastAdapter(ProviderAdapter):
    provider_id = "rentcast"
    display_name = "Rentcast"
    label = "Rentcast API"
    credential = "RENTCAST_API_KEY"

    def __init__(self, http: ProviderHttpClient, api_key: Optional[str] = None, selector: Optional[CandidateSelector] = None):
        super().__init__(http, api_key)
        self.selector = selector or CandidateSelector()

    async def search(self, params: Dict[str, Any], stage: str) -> Optional[List[Dict[str, Any]]]:
        """Property records for ``params``; [] on 404 and None on any other failure"""
        headers = {'Accept': 'application/json', 'X-Api-Key': self.require_key()}
        payload = await self.http.get_json(
            PROPERTIES_ENDPOINT, params=params, headers=headers, provider=self.provider_id, stage=stage, not_found=[]
        )
        if payload is None:
            return None
        if not isinstance(payload, list):
            return []
        return [record for record in payload if isinstance(record, dict) and record]

    async def pick(
        self,
        records: List[Dict[str, Any]],
        context: LookupContext,
        strict: bool = False,
    ) -> Optional[Dict[str, Any]]:
        if not records:
            return None

        target_apn = normalize_apn(context.apn)
        target_fips = normalize_fips(context.fips_code)
        constrained = [record for record in records if matches_constraints(record, target_apn, target_fips)]
        if strict:
            return constrained[0] if constrained else None
        if constrained and (target_apn or target_fips):
            return constrained[0]

        if target_apn:
            for record in records:
                if normalize_apn(record.get('assessorID')) == target_apn:
                    return record
        if target_fips:
            for record in records:
                if property_fips(record) == target_fips:
                    return record

        candidates = [project(index, record) for index, record in enumerate(records)]
        selection = await self.selector.select(candidates, context.address, context.lat, context.lng)
        return records[selection.index] if selection.index is not None else None

    def normalize(
        self,
        record: Dict[str, Any],
        context: LookupContext,
        source: LookupSource,
        constraint_mismatch: bool = False,
    ) -> NormalizedResult:
        apn = normalize_apn(record.get('assessorID'))
        fips_code = property_fips(record) or normalize_fips(context.fips_code)

        latest_assessment = parse_year_map_latest(record.get('taxAssessments'))
        latest_taxes = parse_year_map_latest(record.get('propertyTaxes'))
        assessment = latest_assessment[1] if latest_assessment else {}
        taxes = latest_taxes[1] if latest_taxes else {}

        assessed_value = to_number(assessment.get('value'))
        tax_amount = to_number(taxes.get('total'))
        tax_year = to_integer(taxes.get('year') or assessment.get('year'))
        if tax_year is None and latest_taxes:
            tax_year = latest_taxes[0]

        prior_tax = None
        if latest_taxes:
            prior_entry = (record.get('propertyTaxes') or {}).get(str(latest_taxes[0] - 1))
            if isinstance(prior_entry, dict):
                prior_tax = to_number(prior_entry.get('total'))

        lot_size = to_number(record.get('lotSize'))
        acreage = round(lot_size / SQFT_PER_ACRE, 4) if lot_size else None
        owner = owner_name(record)

        identity = PropertyIdentity(
            address=normalize_text(record.get('formattedAddress') or context.address),
            apn=apn,
            assessor_id=apn,
            fips_code=fips_code,
            owner=owner,
            county=normalize_text(record.get('county') or context.county),
            city=normalize_text(record.get('city') or context.city),
            state=normalize_text(record.get('state') or context.state),
            zip_code=normalize_text(record.get('zipCode') or context.zip_code),
            property_type=normalize_text(record.get('propertyType')),
            year_built=to_integer(record.get('yearBuilt')),
            acreage=acreage,
            lot_size_sqft=lot_size,
        )
        financials = Financials(
            source="Rentcast",
            market_value=assessed_value,
            assessed_value=assessed_value,
            tax_amount=tax_amount,
            tax_prev_year_amount=prior_tax,
            tax_year=tax_year,
            millage_rate=calculate_millage(tax_amount, assessed_value),
            last_sale_date=normalize_text(record.get('lastSaleDate')),
            last_sale_price=to_number(record.get('lastSalePrice')),
        )

        if context.intent == LookupIntent.TAXES:
            has_tax_fields = any(value is not None for value in (assessed_value, tax_amount, tax_year))
            message = (
                "Rentcast: tax financial fields loaded for APN/FIPS match."
                if has_tax_fields
                else "Rentcast: property matched by APN/FIPS, but tax financial fields were not returned."
            )
        elif not apn:
            message = "Rentcast: no APN found."
        elif constraint_mismatch:
            message = f"Rentcast: property found via {SOURCE_PHRASES[source]}, but APN/FIPS did not fully match provided constraints."
        else:
            message = self.found_message(source)

        result = NormalizedResult(
            apn_found=bool(apn),
            apn_lookup_source=source,
            apn_value=apn,
            assessor_id=apn,
            property_identity=identity,
            financials=financials,
            source_provider=self.provider_id,
            message=message,
        )
        return with_snapshot(result)

    async def _step(self, params: Dict[str, Any], context: LookupContext, source: LookupSource, stage: str) -> Optional[NormalizedResult]:
        records = await self.search(params, stage)
        record = await self.pick(records or [], context)
        if record is None:
            return None
        mismatch = not matches_constraints(record, normalize_apn(context.apn), normalize_fips(context.fips_code))
        return self.normalize(record, context, source, mismatch)

    def can_lookup_parcel(self, context: LookupContext) -> bool:
        return bool(normalize_apn(context.apn))

    async def lookup_by_parcel(self, context: LookupContext) -> Optional[NormalizedResult]:
        return await self._step({'assessorID': normalize_apn(context.apn)}, context, LookupSource.APN, "assessor_id_lookup")

    async def lookup_by_address(self, context: LookupContext) -> Optional[NormalizedResult]:
        return await self._step({'address': context.address}, context, LookupSource.ADDRESS, "address_lookup")

    async def lookup_by_coordinates(self, context: LookupContext) -> Optional[NormalizedResult]:
        params = {'latitude': context.lat, 'longitude': context.lng, 'radius': SEARCH_RADIUS_MILES}
        return await self._step(params, context, LookupSource.LAT_LNG, "coordinates_lookup")

    async def lookup_taxes(self, context: LookupContext) -> NormalizedResult:
        """Address search restricted to the record matching the known APN/FIPS."""
        if not context.address:
            return NormalizedResult.empty(self.provider_id, TAXES_NEED_ADDRESS)

        records = await self.search({'address': context.address}, "taxes_address_lookup")
        if records is None:
            return NormalizedResult.empty(self.provider_id, TAXES_QUERY_FAILED)
        if not records:
            return NormalizedResult.empty(self.provider_id, TAXES_UNAVAILABLE)

        record = await self.pick(records, context, strict=True)
        if record is None:
            logger.info("rentcast_taxes_match_rejected", candidates=len(records))
            return NormalizedResult.empty(self.provider_id, TAXES_MISMATCH)

        result = self.normalize(record, context, LookupSource.ADDRESS)
        if not result.apn_found:
            return NormalizedResult.empty(self.provider_id, TAXES_UNAVAILABLE)
        return result

    async def lookup(self, context: LookupContext) -> NormalizedResult:
        if context.intent == LookupIntent.TAXES:
            self.require_key()
            return await self.lookup_taxes(context)
        return await super().lookup(context)
