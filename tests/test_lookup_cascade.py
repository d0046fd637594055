import asyncio

from conftest import FakeHttp

from rvval.providers.attom_client import AttomClient
from rvval.services.lookup_cascade import CascadeState, LookupCascade, MatchSource, PropertyRecord

ADDRESS = "123 Main St, Springfield, IL 62701"


def attom_property(attom_id="555", apn="12345678", fips="17019", line1="123 Main St", **extra):
    record = {
        'identifier': {'attomId': attom_id, 'apn': apn},
        'area': {'county': {'fips': fips, 'name': "Sangamon County"}},
        'address': {
            'line1': line1,
            'locality': "Springfield",
            'countrySubd': "IL",
            'postal1': "62701",
            'oneLine': f"{line1}, Springfield, IL 62701",
        },
    }
    record.update(extra)
    return record


def run_cascade(http, **inputs):
    cascade = LookupCascade(AttomClient(http, "test-key"))
    return asyncio.run(cascade.run(**inputs))


def test_parcel_lookup_short_circuits_disambiguation_but_still_enriches():
    http = FakeHttp()
    http.add("basicprofile", {'property': [attom_property()]}, apn="12345678", fips="17019")
    http.add("property/detail", {'property': [{'summary': {'yearbuilt': 1975}}]}, attomid="555")
    http.add("expandedprofile", {'property': [attom_property(lot={'lotsize1': 12.5})]})

    outcome = run_cascade(http, apn="12-345-678", fips="17019", address=ADDRESS, lat=39.78, lng=-89.65)

    assert outcome.found
    assert outcome.source == MatchSource.PARCEL_FIPS
    assert outcome.trail == [
        CascadeState.PARCEL_LOOKUP,
        CascadeState.DETAIL_ENRICHMENT,
        CascadeState.EXPANDED_ENRICHMENT,
        CascadeState.PARCEL_REENRICHMENT,
        CascadeState.DONE,
    ]
    assert "address_lookup" not in http.stages()
    assert "geo_lookup" not in http.stages()
    assert outcome.property['summary']['yearbuilt'] == 1975
    assert outcome.property['lot']['lotsize1'] == 12.5
    assert http.calls[0].headers['apikey'] == "test-key"


def test_address_lookup_with_single_candidate():
    http = FakeHttp()
    http.add("basicprofile", {'property': [attom_property()]}, stage="address_lookup")

    outcome = run_cascade(http, address=ADDRESS)

    assert outcome.source == MatchSource.ADDRESS
    assert outcome.attom_id == "555"
    lookup = http.calls[0]
    assert lookup.params == {'address1': "123 Main St", 'address2': "Springfield IL 62701"}


def test_normalized_address_retry_only_when_address_differs():
    http = FakeHttp()
    http.add("basicprofile", {'property': [attom_property()]}, stage="normalized_address_lookup")

    outcome = run_cascade(http, address="123  Main St, Springfield, IL 62701, USA")
    assert outcome.source == MatchSource.NORMALIZED_ADDRESS
    assert outcome.trail[:2] == [CascadeState.ADDRESS_LOOKUP, CascadeState.NORMALIZED_ADDRESS_LOOKUP]

    http = FakeHttp()
    outcome = run_cascade(http, address=ADDRESS)
    assert not outcome.found
    assert "normalized_address_lookup" not in http.stages()


def test_geo_lookup_only_and_no_match():
    http = FakeHttp()
    http.add("snapshot", {'property': []})

    outcome = run_cascade(http, lat=39.78, lng=-89.65)

    assert not outcome.found
    assert http.stages() == ["geo_lookup"]
    assert http.calls[0].params['radius'] == 2.0
    assert outcome.trail == [CascadeState.GEO_LOOKUP, CascadeState.DONE]


def test_failed_call_degrades_to_next_state():
    http = FakeHttp()
    http.add("basicprofile", error=TimeoutError("slow"), stage="address_lookup")
    http.add("snapshot", {'property': [attom_property()]})

    outcome = run_cascade(http, address=ADDRESS, lat=39.78, lng=-89.65)

    assert outcome.source == MatchSource.GEO_SNAPSHOT


def test_apn_without_fips_skips_parcel_lookup():
    http = FakeHttp()
    run_cascade(http, apn="12345678", address=ADDRESS)
    assert "parcel_lookup" not in http.stages()


def test_record_merge_strategy_and_version():
    record = PropertyRecord()
    record.apply({
        'address': {'line1': "123 Main St", 'locality': "Springfield"},
        'assessment': {'assessed': {'assdTtlValue': 100}},
        'tax': {'taxAmt': 10},
    })
    record.apply({
        'address': {'locality': "", 'postal1': "62701"},
        'assessment': {'market': {'mktTtlValue': 300}},
        'tax': None,
    })

    assert record.version == 2
    assert record.data['address'] == {'line1': "123 Main St", 'locality': "Springfield", 'postal1': "62701"}
    assert record.data['assessment'] == {'market': {'mktTtlValue': 300}}
    assert record.data['tax'] == {'taxAmt': 10}


def test_stage_limit_keeps_address_as_ranking_target():
    http = FakeHttp()
    other = attom_property(attom_id="111", apn="99999999", line1="999 Other Rd")
    http.add("basicprofile", {'property': [other, attom_property(attom_id="222")]}, stage="parcel_lookup")
    cascade = LookupCascade(AttomClient(http, "test-key"))

    outcome = asyncio.run(cascade.run(
        apn="12345678",
        fips="17019",
        address=ADDRESS,
        lat=39.78,
        lng=-89.65,
        stages={CascadeState.PARCEL_LOOKUP},
    ))

    assert outcome.attom_id == "222"
    assert outcome.trail[0] == CascadeState.PARCEL_LOOKUP
    assert "address_lookup" not in http.stages()
    assert "geo_lookup" not in http.stages()

    http = FakeHttp()
    outcome = asyncio.run(LookupCascade(AttomClient(http, "test-key")).run(
        apn="12345678", fips="17019", address=ADDRESS, stages={CascadeState.PARCEL_LOOKUP},
    ))
    assert not outcome.found
    assert http.stages() == ["parcel_lookup"]
