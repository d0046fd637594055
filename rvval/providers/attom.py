"""
ATTOM adapter.

Each lookup step runs its own ATTOM cascade lookup, ranks the candidates
against everything the caller knows, then enriches. Identity and tax facts
are read off the merged record, and area metrics come from
the waterfall, HUD CHAS housing supply and, when configured, the FRED
10-year treasury.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

import structlog

from ..config import get_settings
from ..demographics.area_metrics import AreaMetricsAggregator, AreaReport
from ..exceptions import MarketRateError
from ..schemas import Financials, LookupContext, LookupSource, NormalizedResult, PropertyIdentity
from ..services.candidate_selector import CandidateSelector
from ..services.lookup_cascade import CascadeOutcome, CascadeState, LookupCascade, MatchSource
from ..services.market_rates import fetch_10_year_treasury
from ..utils.payload_search import first_path_value, get_path
from ..utils.values import (
    calculate_assessment_ratio,
    calculate_millage,
    first_text,
    get_latest_by_year,
    normalize_text,
    pick_number,
    to_acres,
    to_integer,
    year_of,
)
from .attom_client import (
    OWNER_PATHS,
    AttomClient,
    address_fields,
    extract_apn,
    extract_county,
    extract_fips,
    one_line_address,
)
from .base import ProviderAdapter, with_snapshot
from .http import ProviderHttpClient

logger = structlog.get_logger(__name__)

# Lookup states each adapter step may run; the rest of the context only ranks candidates
PARCEL_STAGES = frozenset({CascadeState.PARCEL_LOOKUP})
ADDRESS_STAGES = frozenset({CascadeState.ADDRESS_LOOKUP, CascadeState.NORMALIZED_ADDRESS_LOOKUP})
GEO_STAGES = frozenset({CascadeState.GEO_LOOKUP})


def latest_entry(block: Any) -> Optional[Dict[str, Any]]:
    """Newest entry of a history list or year-keyed map; a plain block is returned as is"""
    if isinstance(block, list):
        return get_latest_by_year(block)
    if isinstance(block, dict):
        if block and all(to_integer(key) is not None for key in block):
            return get_latest_by_year(block)
        return block
    return None


def _value(entry: Optional[Dict[str, Any]], *paths: str) -> Optional[float]:
    if not entry:
        return None
    return pick_number(*(get_path(entry, path) for path in paths))


def attom_financials(record: Dict[str, Any]) -> Financials:
    assessment = latest_entry(record.get('assessment') or record.get('assessmentHistory') or record.get('assessments'))
    tax = latest_entry(record.get('tax') or record.get('taxHistory') or record.get('taxes'))
    sale = record.get('sale') or {}

    assessed_value = _value(
        assessment, 'assessed.assdTtlValue', 'assessed.value', 'assessedValue', 'totalAssessedValue', 'value'
    )
    true_market_value = _value(
        assessment, 'market.mktTtlValue', 'market.value', 'marketValue', 'market.total', 'market.valueTotal'
    )
    tax_amount = _value(tax, 'amount.total', 'tax.amount.total', 'taxAmount', 'taxAmt', 'amount') \
        or _value(assessment, 'tax.taxAmt', 'tax.taxAmount')
    prior_tax = _value(tax, 'taxAmtPrior', 'priorTaxAmt') or _value(assessment, 'tax.taxAmtPrior', 'tax.priorTaxAmt')
    last_sale_price = pick_number(
        get_path(sale, 'amount.saleAmt'),
        get_path(sale, 'amount.salePrice'),
        sale.get('saleAmount'),
        sale.get('price'),
    )

    return Financials(
        source="ATTOM",
        market_value=true_market_value if true_market_value is not None else assessed_value,
        assessed_value=assessed_value,
        tax_amount=tax_amount,
        tax_prev_year_amount=prior_tax,
        tax_year=year_of(tax) or year_of(assessment),
        millage_rate=calculate_millage(tax_amount, assessed_value),
        assessment_ratio=calculate_assessment_ratio(
            assessed_value, true_market_value if true_market_value else last_sale_price
        ),
        last_sale_date=first_text((
            sale.get('saleTransDate'),
            get_path(sale, 'amount.saleRecDate'),
            sale.get('saleDate'),
            sale.get('date'),
        )),
        last_sale_price=last_sale_price,
    )


def attom_identity(record: Dict[str, Any], fallback_address: Optional[str] = None) -> PropertyIdentity:
    fields = address_fields(record)
    lot = record.get('lot') or {}
    summary = record.get('summary') or {}

    lot_size_sqft = pick_number(
        lot.get('lotsize2'),
        get_path(lot, 'lotSize2.size'),
        lot.get('lotSize2'),
        summary.get('lotsize2'),
        get_path(lot, 'lotSize.size'),
    )
    acreage = pick_number(lot.get('lotsize1'), get_path(lot, 'lotSize1.size'), lot.get('lotSize1'), summary.get('lotsize1'))
    if acreage is None:
        acreage = to_acres(lot_size_sqft)

    apn = normalize_text(extract_apn(record))
    return PropertyIdentity(
        address=normalize_text(one_line_address(record)) or normalize_text(fallback_address),
        apn=apn,
        assessor_id=apn,
        fips_code=extract_fips(record),
        owner=normalize_text(first_path_value(record, OWNER_PATHS)),
        county=extract_county(record),
        city=normalize_text(fields['city']),
        state=normalize_text(fields['state']),
        zip_code=normalize_text(fields['zip']),
        property_type=first_text((summary.get('propclass'), summary.get('propType'), summary.get('propertyType'))),
        year_built=to_integer(summary.get('yearbuilt') or summary.get('yearBuilt')),
        acreage=acreage,
        lot_size_sqft=lot_size_sqft,
    )


@dataclass
class AttomReport:
    """Everything the ATTOM path knows about one resolved property."""
    identity: PropertyIdentity
    financials: Financials
    area: AreaReport
    source: MatchSource
    attom_id: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            'property_identity': self.identity.model_dump(),
            'financials': self.financials.model_dump(),
            'demographics_economics': self.area.metrics.model_dump(),
            'housing_crisis_metrics': self.area.housing.model_dump(),
            'demographics_details': self.area.community,
            'attomId': self.attom_id,
            'source': self.source.value,
        }


class AttomAdapter(ProviderAdapter):
    provider_id = "attom"
    display_name = "ATTOM"
    label = "ATTOM Api"
    credential = "ATTOM_API_KEY"

    def __init__(
        self,
        http: ProviderHttpClient,
        api_key: Optional[str] = None,
        selector: Optional[CandidateSelector] = None,
        aggregator: Optional[AreaMetricsAggregator] = None,
        include_treasury: bool = True,
    ):
        super().__init__(http, api_key)
        self.selector = selector
        self.aggregator = aggregator
        self.include_treasury = include_treasury

    def client(self) -> AttomClient:
        return AttomClient(self.http, self.require_key(), get_settings().ATTOM_GEO_RADIUS_MILES)

    async def _treasury(self, financials: Financials) -> None:
        if not self.include_treasury or not get_settings().FRED_APIKEY:
            return
        try:
            rate = await fetch_10_year_treasury(self.http)
        except MarketRateError as e:
            logger.warning("treasury_rate_unavailable", code=e.code, error=str(e))
            return
        financials.us_10_year_treasury = rate.rate
        financials.us_10_year_treasury_date = rate.date

    async def build_report(self, outcome: CascadeOutcome, client: AttomClient, context: LookupContext) -> AttomReport:
        record = outcome.property
        identity = attom_identity(record, context.address)
        financials = attom_financials(record)

        aggregator = self.aggregator or AreaMetricsAggregator(self.http, attom=client)
        area = await aggregator.aggregate(
            record=record,
            payload=outcome.payload,
            fips_code=identity.fips_code,
            lat=context.lat,
            lng=context.lng,
            county=identity.county or context.county,
            state=identity.state or context.state,
            city=identity.city or context.city,
        )
        identity.fips_code = area.fips.fips_code
        await self._treasury(financials)

        return AttomReport(
            identity=identity,
            financials=financials,
            area=area,
            source=outcome.source,
            attom_id=outcome.attom_id,
        )

    async def resolve(
        self,
        context: LookupContext,
        *,
        apn: Optional[str] = None,
        fips: Optional[str] = None,
        address: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        stages: Optional[FrozenSet[CascadeState]] = None,
    ) -> Optional[AttomReport]:
        """Run the cascade with the given inputs, limited to ``stages`` when set; None when no property was found"""
        client = self.client()
        cascade = LookupCascade(client, selector=self.selector)
        outcome = await cascade.run(apn=apn, fips=fips, address=address, lat=lat, lng=lng, stages=stages)
        if not outcome.found:
            return None
        return await self.build_report(outcome, client, context)

    def to_normalized(self, report: AttomReport, source: LookupSource) -> NormalizedResult:
        apn = report.identity.apn
        result = NormalizedResult(
            apn_found=bool(apn),
            apn_lookup_source=source,
            apn_value=apn,
            assessor_id=apn,
            property_identity=report.identity,
            financials=report.financials,
            demographics_economics=report.area.metrics,
            housing_crisis_metrics=report.area.housing,
            demographics_details=report.area.community,
            source_provider=self.provider_id,
            message=self.found_message(source) if apn else "ATTOM: property found but APN missing.",
        )
        return with_snapshot(result)

    async def lookup_by_parcel(self, context: LookupContext) -> Optional[NormalizedResult]:
        report = await self.resolve(
            context,
            apn=context.apn,
            fips=context.fips_code,
            address=context.address,
            lat=context.lat,
            lng=context.lng,
            stages=PARCEL_STAGES,
        )
        return self.to_normalized(report, LookupSource.APN) if report else None

    async def lookup_by_address(self, context: LookupContext) -> Optional[NormalizedResult]:
        report = await self.resolve(
            context, address=context.address, lat=context.lat, lng=context.lng, stages=ADDRESS_STAGES
        )
        return self.to_normalized(report, LookupSource.ADDRESS) if report else None

    async def lookup_by_coordinates(self, context: LookupContext) -> Optional[NormalizedResult]:
        report = await self.resolve(
            context, address=context.address, lat=context.lat, lng=context.lng, stages=GEO_STAGES
        )
        return self.to_normalized(report, LookupSource.LAT_LNG) if report else None
