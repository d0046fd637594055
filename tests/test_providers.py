import asyncio
from typing import List, Optional

import pytest
from conftest import FakeHttp, FakeLLM

from rvval.demographics.area_metrics import AreaMetricsAggregator
from rvval.demographics.hud_chas import HudChasTable
from rvval.exceptions import ConfigurationError
from rvval.providers.attom import AttomAdapter, attom_financials, attom_identity
from rvval.providers.base import ProviderAdapter, build_api_snapshot
from rvval.providers.melissa import CONSTRAINT_MISMATCH_MESSAGE, MelissaAdapter
from rvval.providers.rentcast import TAXES_MISMATCH, RentcastAdapter
from rvval.providers.reportallusa import ReportAllUsaAdapter
from rvval.schemas import LookupContext, LookupIntent, LookupSource, NormalizedResult
from rvval.services.candidate_selector import CandidateSelector

ADDRESS = "123 Main St, Springfield, IL 62701"


def lookup(adapter, **context):
    return asyncio.run(adapter.lookup(LookupContext(**context)))


class RecordingAdapter(ProviderAdapter):
    provider_id = "recording"
    display_name = "Recording"
    credential = "RECORDING_KEY"

    def __init__(self, answers):
        super().__init__(FakeHttp(), api_key="key")
        self.answers = answers
        self.steps: List[str] = []

    def _answer(self, step: str, source: LookupSource) -> Optional[NormalizedResult]:
        self.steps.append(step)
        apn = self.answers.get(step)
        if apn is None:
            return None
        return NormalizedResult(
            apn_found=bool(apn), apn_lookup_source=source, apn_value=apn or None, source_provider=self.provider_id
        )

    async def lookup_by_parcel(self, context):
        return self._answer("parcel", LookupSource.APN)

    async def lookup_by_address(self, context):
        return self._answer("address", LookupSource.ADDRESS)

    async def lookup_by_coordinates(self, context):
        return self._answer("coordinates", LookupSource.LAT_LNG)


FULL_CONTEXT = dict(apn="1", fips_code="17019", address=ADDRESS, lat=39.78, lng=-89.65)


def test_adapter_step_order_and_short_circuit():
    adapter = RecordingAdapter({'parcel': "111"})
    result = lookup(adapter, **FULL_CONTEXT)
    assert adapter.steps == ["parcel"]
    assert result.apn_lookup_source == LookupSource.APN

    adapter = RecordingAdapter({'parcel': "", 'address': "222"})
    result = lookup(adapter, **FULL_CONTEXT)
    assert adapter.steps == ["parcel", "address"]
    assert result.apn_value == "222"


def test_adapter_coordinates_without_apn_and_not_found_message():
    adapter = RecordingAdapter({'coordinates': ""})
    result = lookup(adapter, lat=39.78, lng=-89.65)
    assert adapter.steps == ["coordinates"]
    assert result.message == "Recording: property found with coordinates, but APN was not returned."

    adapter = RecordingAdapter({})
    result = lookup(adapter, **FULL_CONTEXT)
    assert adapter.steps == ["parcel", "address", "coordinates"]
    assert not result.apn_found
    assert result.message == "No APN/Assessor ID found via address or coordinates for recording."


def test_missing_key_raises_before_any_call():
    http = FakeHttp()
    adapter = MelissaAdapter(http, api_key="")
    with pytest.raises(ConfigurationError) as excinfo:
        lookup(adapter, address=ADDRESS)
    assert excinfo.value.credential == "MELISSA_API"
    assert http.calls == []


# Melissa

MELISSA_RECORD = {
    'Parcel': {'FormattedAPN': "12-345-678", 'UnformattedAPN': "12345678", 'FIPSCode': "17019"},
    'PrimaryOwner': {'Name1Full': "SUNNY ACRES RV LLC"},
    'PropertySize': {'AreaLotAcres': "12.5", 'AreaLotSF': "544500"},
    'Tax': {'MarketValueTotal': "900000", 'AssessedValueTotal': "300000", 'TaxBilledAmount': "6000", 'TaxFiscalYear': "2023"},
    'SaleInfo': {'DeedLastSalePrice': "750000", 'DeedLastSaleDate': "2019-05-01"},
    'PropertyUseInfo': {'PropertyUseGroup': "Commercial", 'YearBuilt': "1978"},
}


def test_melissa_address_lookup_retries_without_columns():
    http = FakeHttp()
    http.add("LookupProperty", {'Records': []}, stage="address_lookup")
    http.add("LookupProperty", {'Records': [MELISSA_RECORD]}, stage="address_lookup_all_columns")

    result = lookup(MelissaAdapter(http, api_key="m-key"), address=ADDRESS)

    assert result.apn_found
    assert result.apn_value == "12345678"
    assert result.message == "Melissa: APN found via address."
    assert http.calls[0].params['cols'].startswith("GRP_PARCEL")
    assert 'cols' not in http.calls[1].params
    assert http.calls[0].params['city'] == "Springfield"

    financials = result.financials
    assert financials.millage_rate == 20.0
    assert financials.assessment_ratio == 0.333
    assert result.property_identity.acreage == 12.5
    assert result.api_snapshot['owner_name'] == "SUNNY ACRES RV LLC"
    assert result.api_snapshot['parcel_1'] == "12345678"


def test_melissa_coordinates_go_through_reverse_geocode():
    http = FakeHttp()
    http.add("ReverseGeoCode", {'Records': [{'MelissaAddressKey': "8001234567"}]})
    http.add("LookupProperty", {'Records': [MELISSA_RECORD]}, mak="8001234567")

    result = lookup(MelissaAdapter(http, api_key="m-key"), lat=39.78, lng=-89.65)

    assert result.apn_lookup_source == LookupSource.LAT_LNG
    assert http.calls[0].params['dist'] == 0.1


def test_melissa_rejects_fips_mismatch():
    http = FakeHttp()
    http.add("LookupProperty", {'Records': [MELISSA_RECORD]})

    result = lookup(MelissaAdapter(http, api_key="m-key"), apn="12-345-678", fips_code="06037")

    assert not result.apn_found
    assert result.message == CONSTRAINT_MISMATCH_MESSAGE


# Rentcast

def rentcast_record(apn="12345678", state_fips="17", county_fips="167", address=ADDRESS):
    return {
        'formattedAddress': address,
        'addressLine1': address.split(',')[0],
        'city': "Springfield",
        'state': "IL",
        'zipCode': "62701",
        'assessorID': apn,
        'stateFips': state_fips,
        'countyFips': county_fips,
        'lotSize': 87120,
        'propertyType': "Manufactured",
        'yearBuilt': 1980,
        'owner': {'names': ["Jane Doe", "John Doe"]},
        'taxAssessments': {'2022': {'year': 2022, 'value': 200000}, '2023': {'year': 2023, 'value': 250000}},
        'propertyTaxes': {'2022': {'year': 2022, 'total': 4500}, '2023': {'year': 2023, 'total': 5000}},
    }


def test_rentcast_address_lookup_reads_latest_year():
    http = FakeHttp()
    http.add("api.rentcast.io", [rentcast_record()], address=ADDRESS)

    result = lookup(RentcastAdapter(http, api_key="r-key"), address=ADDRESS)

    assert result.apn_found
    assert result.message == "Rentcast: APN found via address."
    assert result.property_identity.fips_code == "17167"
    assert result.property_identity.owner == "Jane Doe & John Doe"
    assert result.property_identity.acreage == 2.0
    assert result.financials.tax_amount == 5000
    assert result.financials.tax_prev_year_amount == 4500
    assert result.financials.tax_year == 2023
    assert result.financials.millage_rate == 20.0
    assert http.calls[0].headers['X-Api-Key'] == "r-key"


def test_rentcast_404_is_empty_and_coordinates_use_small_radius():
    http = FakeHttp()
    http.add("api.rentcast.io", {'message': "not found"}, status=404, address=ADDRESS)
    http.add("api.rentcast.io", [rentcast_record()], latitude=39.78)

    result = lookup(RentcastAdapter(http, api_key="r-key"), address=ADDRESS, lat=39.78, lng=-89.65)

    assert result.apn_lookup_source == LookupSource.LAT_LNG
    assert http.calls[1].params['radius'] == 0.1


def test_rentcast_prefers_constraint_match_and_flags_partial_match():
    http = FakeHttp()
    http.add("api.rentcast.io", [rentcast_record(apn="999"), rentcast_record()], address=ADDRESS)

    result = lookup(RentcastAdapter(http, api_key="r-key"), address=ADDRESS, fips_code="17167", apn="12-345-678")
    # assessorID lookup is a 404, the address lookup has a full match
    assert result.apn_value == "12345678"
    assert result.message == "Rentcast: APN found via address."

    http = FakeHttp()
    http.add("api.rentcast.io", [rentcast_record(state_fips="06", county_fips="037")], address=ADDRESS)
    result = lookup(RentcastAdapter(http, api_key="r-key"), address=ADDRESS, apn="12345678", fips_code="17167")
    assert result.message == "Rentcast: property found via address, but APN/FIPS did not fully match provided constraints."


def test_rentcast_taxes_intent_requires_strict_match():
    http = FakeHttp()
    http.add("api.rentcast.io", [rentcast_record(state_fips="06", county_fips="037")], address=ADDRESS)
    adapter = RentcastAdapter(http, api_key="r-key")

    result = lookup(adapter, intent="taxes", address=ADDRESS, apn="12345678", fips_code="17167")
    assert not result.apn_found
    assert result.message == TAXES_MISMATCH

    http = FakeHttp()
    http.add("api.rentcast.io", [rentcast_record()], address=ADDRESS)
    result = lookup(RentcastAdapter(http, api_key="r-key"), intent="taxes", address=ADDRESS, apn="12345678", fips_code="17167")
    assert result.apn_found
    assert result.message == "Rentcast: tax financial fields loaded for APN/FIPS match."
    assert [call.stage for call in http.calls] == ["taxes_address_lookup"]


def test_rentcast_ambiguous_candidates_go_through_selector():
    http = FakeHttp()
    other = rentcast_record(apn="999", address="9 Elm St, Springfield, IL 62701")
    http.add("api.rentcast.io", [other, rentcast_record()], address=ADDRESS)
    selector = CandidateSelector(llm=FakeLLM('{"index": 1}'), timeout_seconds=1)

    result = lookup(RentcastAdapter(http, api_key="r-key", selector=selector), address=ADDRESS)
    assert result.apn_value == "12345678"


# ReportAllUSA

def test_reportallusa_parcel_lookup_with_declared_and_searched_fields():
    http = FakeHttp()
    payload = {
        'status': "OK",
        'results': [{
            'parcel_id': "12-345-678",
            'owner': "SUNNY ACRES RV LLC",
            'mkt_val_tot': 900000,
            'assessed_val_tot': 300000,
            'tax_info': {'tax_amount': 6000, 'tax_year': 2023},
            'acreage_calc': 12.5,
        }],
    }
    http.add("reportallusa.com", payload, v=2, county_id="17019")

    result = lookup(ReportAllUsaAdapter(http, api_key="client-id"), apn="12-345-678", fips_code="17019")

    assert result.apn_found
    assert result.apn_value == "12345678"
    assert result.property_identity.owner == "SUNNY ACRES RV LLC"
    assert result.financials.market_value == 900000
    assert result.financials.tax_amount == 6000
    assert result.financials.tax_year == 2023
    assert result.message == "ReportAllUSA: APN found via APN lookup and taxes extracted."
    assert http.calls[0].params['client'] == "client-id"


def test_reportallusa_coordinates_use_spatial_intersect():
    http = FakeHttp()
    http.add("reportallusa.com", {'results': [{'parcel_id': "777"}]}, v=9)

    result = lookup(ReportAllUsaAdapter(http, api_key="client-id"), address=ADDRESS, lat=39.78, lng=-89.65)

    # address lookup needs a county id, so only the spatial query runs
    assert len(http.calls) == 1
    assert http.calls[0].params['spatial_intersect'] == "POINT(-89.65 39.78)"
    assert http.calls[0].params['si_srid'] == 4326
    assert result.message == "ReportAllUSA: APN found, but tax financial fields are not present in provider response."


# ATTOM

ATTOM_RECORD = {
    'identifier': {'attomId': "555", 'apn': "12345678"},
    'area': {'county': {'fips': "17167", 'name': "Sangamon County"}},
    'address': {
        'line1': "123 Main St",
        'locality': "Springfield",
        'countrySubd': "IL",
        'postal1': "62701",
        'oneLine': ADDRESS,
    },
    'lot': {'lotsize2': 87120},
    'summary': {'propclass': "Mobile Home Park", 'yearbuilt': 1972},
    'owner': {'owner1FullName': "SUNNY ACRES RV LLC"},
    'assessment': {
        'assessed': {'assdTtlValue': 300000},
        'market': {'mktTtlValue': 900000},
        'tax': {'taxAmt': 6000, 'taxYear': 2023, 'taxAmtPrior': 5800},
    },
    'sale': {'amount': {'saleAmt': 750000}, 'saleTransDate': "2019-05-01"},
}


def attom_adapter(http, tmp_path, llm=None):
    aggregator = AreaMetricsAggregator(http, hud_table=HudChasTable(tmp_path / "no-hud"))
    selector = CandidateSelector(llm=llm, timeout_seconds=1)
    return AttomAdapter(http, api_key="a-key", selector=selector, aggregator=aggregator, include_treasury=False)


def test_attom_financial_and_identity_mapping():
    financials = attom_financials(ATTOM_RECORD)
    assert financials.market_value == 900000
    assert financials.tax_prev_year_amount == 5800
    assert financials.tax_year == 2023
    assert financials.millage_rate == 20.0
    assert financials.assessment_ratio == 0.333

    identity = attom_identity(ATTOM_RECORD)
    assert identity.acreage == 2.0
    assert identity.owner == "SUNNY ACRES RV LLC"
    assert identity.fips_code == "17167"

    no_market = dict(ATTOM_RECORD, assessment={'assessed': {'assdTtlValue': 300000}})
    fallback = attom_financials(no_market)
    assert fallback.market_value == 300000
    assert fallback.assessment_ratio == 0.4


def test_attom_single_candidate_address_match_skips_model(tmp_path):
    http = FakeHttp()
    http.add("basicprofile", {'property': [ATTOM_RECORD]}, stage="address_lookup")
    llm = FakeLLM('{"index": 0}')

    result = lookup(attom_adapter(http, tmp_path, llm), address=ADDRESS)

    assert result.apn_found
    assert result.apn_lookup_source == LookupSource.ADDRESS
    assert result.message == "ATTOM: APN found via address."
    assert llm.prompts == []
    assert result.api_snapshot['fair_market_value'] == 900000


def test_attom_parcel_lookup_still_enriches(tmp_path):
    http = FakeHttp()
    http.add("basicprofile", {'property': [ATTOM_RECORD]}, apn="12345678", fips="17167")

    result = lookup(attom_adapter(http, tmp_path), apn="12-345-678", fips_code="17167", address=ADDRESS)

    assert result.apn_lookup_source == LookupSource.APN
    assert "detail_enrichment" in http.stages()
    assert "expanded_enrichment" in http.stages()
    assert "address_lookup" not in http.stages()


OTHER_ATTOM_RECORD = {
    'identifier': {'attomId': "111", 'apn': "99999999"},
    'area': {'county': {'fips': "17115", 'name': "Macon County"}},
    'address': {
        'line1': "999 Other Rd",
        'locality': "Decatur",
        'countrySubd': "IL",
        'postal1': "62521",
        'oneLine': "999 Other Rd, Decatur, IL 62521",
    },
}

MATCHING_ATTOM_RECORD = dict(ATTOM_RECORD, identifier={'attomId': "222", 'apn': "12345678"})


def detail_ids(http):
    return [call.params['attomid'] for call in http.calls if call.stage == "detail_enrichment"]


def test_attom_parcel_step_ranks_candidates_by_known_address(tmp_path):
    http = FakeHttp()
    http.add("basicprofile", {'property': [OTHER_ATTOM_RECORD, MATCHING_ATTOM_RECORD]}, apn="12345678", fips="17167")
    adapter = attom_adapter(http, tmp_path)
    context = LookupContext(apn="12-345-678", fips_code="17167", address=ADDRESS, lat=39.78, lng=-89.65)

    result = asyncio.run(adapter.lookup_by_parcel(context))

    assert detail_ids(http) == ["222"]
    assert result.apn_value == "12345678"
    assert result.property_identity.fips_code == "17167"
    # the known address and coordinates rank candidates but are not looked up
    assert "address_lookup" not in http.stages()
    assert "geo_lookup" not in http.stages()


def test_attom_parcel_step_passes_known_address_to_model(tmp_path):
    http = FakeHttp()
    http.add("basicprofile", {'property': [OTHER_ATTOM_RECORD, MATCHING_ATTOM_RECORD]}, apn="12345678", fips="17167")
    llm = FakeLLM('{"index": 1}')
    context = LookupContext(apn="12345678", fips_code="17167", address=ADDRESS)

    asyncio.run(attom_adapter(http, tmp_path, llm).lookup_by_parcel(context))

    assert f"Address: {ADDRESS}" in llm.prompts[0]
    assert detail_ids(http) == ["222"]


def test_attom_coordinates_step_ranks_candidates_by_known_address(tmp_path):
    http = FakeHttp()
    http.add("snapshot", {'property': [OTHER_ATTOM_RECORD, MATCHING_ATTOM_RECORD]})
    adapter = attom_adapter(http, tmp_path)
    context = LookupContext(address=ADDRESS, lat=39.78, lng=-89.65)

    result = asyncio.run(adapter.lookup_by_coordinates(context))

    assert detail_ids(http) == ["222"]
    assert result.apn_lookup_source == LookupSource.LAT_LNG
    assert http.stages()[0] == "geo_lookup"
    assert "address_lookup" not in http.stages()


def test_attom_coordinates_only_with_no_candidates(tmp_path):
    http = FakeHttp()
    http.add("snapshot", {'property': []})

    result = lookup(attom_adapter(http, tmp_path), lat=39.78, lng=-89.65)

    assert not result.apn_found
    assert result.message == "No APN/Assessor ID found via address or coordinates for attom."
    assert http.stages() == ["geo_lookup"]


def test_api_snapshot_prefers_prior_year_taxes():
    result = NormalizedResult(source_provider="attom")
    result.financials.tax_amount = 100
    assert build_api_snapshot(result)['previous_year_re_taxes'] == 100

    result.financials.tax_prev_year_amount = 90
    snapshot = build_api_snapshot(result)
    assert snapshot['tax_prev_year_amount'] == 90
    assert 'owner_name' not in snapshot


def test_taxes_intent_parses_from_context():
    assert LookupContext(intent="TAXES").intent == LookupIntent.TAXES
    assert LookupContext(intent="anything").intent == LookupIntent.STEP1


# resolve_property

def test_resolve_property_taxes_intent_needs_apn():
    from rvval.services.property_resolver import TAXES_NEED_APN, resolve_property

    http = FakeHttp()
    result = asyncio.run(resolve_property("rentcast", LookupContext(intent="taxes", address=ADDRESS), http=http))

    assert not result.apn_found
    assert result.source_provider == "rentcast"
    assert result.message == TAXES_NEED_APN
    assert http.calls == []


def test_resolve_property_requires_some_input():
    from rvval.exceptions import ContextValidationError
    from rvval.services.property_resolver import resolve_property

    with pytest.raises(ContextValidationError):
        asyncio.run(resolve_property("melissa", LookupContext(county="Sangamon"), http=FakeHttp()))


def test_resolve_property_unknown_provider_uses_melissa(monkeypatch):
    from rvval.services import property_resolver

    monkeypatch.setattr(MelissaAdapter, "credential", "UNSET_TEST_CREDENTIAL")
    http = FakeHttp()
    selector = CandidateSelector(llm=None, timeout_seconds=1)

    with pytest.raises(ConfigurationError) as excinfo:
        asyncio.run(property_resolver.resolve_property("zillow", LookupContext(address=ADDRESS), http=http, selector=selector))
    assert excinfo.value.credential == "UNSET_TEST_CREDENTIAL"
    assert property_resolver.normalize_provider(" ATTOM ") == "attom"
    assert not property_resolver.is_known_provider("zillow")
