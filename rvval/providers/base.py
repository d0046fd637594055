"""
Provider adapter base.

Every adapter answers ``lookup(context) -> NormalizedResult`` with the same
three steps: APN+FIPS, then free-text address, then coordinates. The first
step whose result carries an APN wins. A coordinate hit without an APN is
still returned, with a message saying so. When nothing matches the result is
empty and carries the standard "no APN found" message naming the provider.
"""

from abc import ABC
from typing import Any, Dict, Optional

import structlog

from ..config import get_settings
from ..exceptions import ConfigurationError
from ..schemas import METRIC_FIELDS, LookupContext, LookupSource, NormalizedResult
from ..utils.values import is_empty_value, normalize_apn, normalize_fips, normalize_text, to_integer, to_number
from .http import ProviderHttpClient

logger = structlog.get_logger(__name__)

SOURCE_PHRASES = {
    LookupSource.APN: "APN lookup",
    LookupSource.ADDRESS: "address",
    LookupSource.LAT_LNG: "coordinates",
}


def build_api_snapshot(result: NormalizedResult) -> Dict[str, Any]:
    """
    Flat provenance map of every automated field the result supplies, keyed
    like the form fields it will be written to.
    """
    identity = result.property_identity
    financials = result.financials
    snapshot: Dict[str, Any] = {}

    def put(value: Any, *keys: str) -> None:
        if not is_empty_value(value):
            for key in keys:
                snapshot[key] = value

    put(normalize_text(identity.owner), 'owner_name')
    put(normalize_apn(identity.apn), 'parcel_1', 'parcelNumber')
    put(normalize_fips(identity.fips_code), 'fips_code')
    put(to_number(identity.acreage), 'acreage', 'parcel_1_acreage')
    put(normalize_text(identity.property_type), 'property_type')
    put(to_integer(identity.year_built), 'year_built')
    put(to_number(financials.last_sale_price), 'last_sale_price')
    put(to_number(financials.assessed_value), 'tax_assessed_value', 'assessed_value')
    put(to_integer(financials.tax_year), 'tax_year')

    prior_taxes = financials.tax_prev_year_amount
    if prior_taxes is None:
        prior_taxes = financials.tax_amount
    put(to_number(prior_taxes), 'tax_prev_year_amount', 'previous_year_re_taxes')

    put(to_number(financials.market_value), 'fair_market_value')
    put(to_number(financials.assessment_ratio), 'tax_assessment_rate')
    put(to_number(financials.millage_rate), 'tax_millage_rate')

    demographics = result.demographics_economics
    for name in METRIC_FIELDS:
        put(getattr(demographics, name), name)

    housing = result.housing_crisis_metrics
    put(housing.eli_renter_households, 'eli_renter_households')
    put(housing.affordable_units_per_100, 'units_per_100')
    put(housing.total_units, 'total_units')
    put(financials.us_10_year_treasury, 'us_10_year_treasury')

    return snapshot


def with_snapshot(result: NormalizedResult) -> NormalizedResult:
    result.api_snapshot = build_api_snapshot(result)
    return result


class ProviderAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses override whichever of lookup_by_parcel / lookup_by_address /
    lookup_by_coordinates their provider supports; each returns a
    NormalizedResult or None for "no match".
    """

    provider_id: str = ""
    display_name: str = ""
    label: str = ""
    credential: str = ""

    def __init__(self, http: ProviderHttpClient, api_key: Optional[str] = None):
        self.http = http
        self.api_key = api_key if api_key is not None else getattr(get_settings(), self.credential, None)

    def require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(self.credential, self.display_name)
        return self.api_key

    def not_found(self) -> NormalizedResult:
        return NormalizedResult.empty(
            self.provider_id,
            f"No APN/Assessor ID found via address or coordinates for {self.provider_id}.",
        )

    def found_message(self, source: LookupSource) -> str:
        return f"{self.display_name}: APN found via {SOURCE_PHRASES[source]}."

    def can_lookup_parcel(self, context: LookupContext) -> bool:
        return context.has_parcel

    async def lookup_by_parcel(self, context: LookupContext) -> Optional[NormalizedResult]:
        return None

    async def lookup_by_address(self, context: LookupContext) -> Optional[NormalizedResult]:
        return None

    async def lookup_by_coordinates(self, context: LookupContext) -> Optional[NormalizedResult]:
        return None

    async def lookup(self, context: LookupContext) -> NormalizedResult:
        """
        Resolve ``context`` through the three lookup steps.

        Raises:
            ConfigurationError: if the provider credential is missing
        """
        self.require_key()

        if self.can_lookup_parcel(context):
            result = await self.lookup_by_parcel(context)
            if result is not None and result.apn_found:
                return result

        if context.address:
            result = await self.lookup_by_address(context)
            if result is not None and result.apn_found:
                return result

        if context.has_coordinates:
            result = await self.lookup_by_coordinates(context)
            if result is not None:
                if result.apn_found:
                    return result
                result.message = f"{self.display_name}: property found with coordinates, but APN was not returned."
                return result

        logger.info("provider_no_apn", provider=self.provider_id)
        return self.not_found()
