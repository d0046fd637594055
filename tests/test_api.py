import pytest
from conftest import FakeHttp, MemorySettingsStore
from fastapi.testclient import TestClient

from rvval.api import routes
from rvval.api.app import create_app
from rvval.config import get_settings
from rvval.config.attom_key import ATTOM_SETTINGS_KEY, AttomKeyResolver
from rvval.config.settings import Settings
from rvval.services.candidate_selector import CandidateSelector

ADDRESS = "123 Main St, Springfield, IL 62701"


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def key_resolver():
    return AttomKeyResolver(store=MemorySettingsStore(), config=Settings(ATTOM_API_KEY=None))


@pytest.fixture
def client(http, key_resolver):
    app = create_app(init_database=False)
    app.dependency_overrides[routes.get_http_client] = lambda: http
    app.dependency_overrides[routes.get_key_resolver] = lambda: key_resolver
    app.dependency_overrides[routes.get_selector] = lambda: CandidateSelector(llm=None, timeout_seconds=1)
    return TestClient(app)


def attom_record():
    return {
        'identifier': {'attomId': "555", 'apn': "12345678"},
        'area': {'county': {'fips': "17167", 'name': "Sangamon County"}},
        'address': {'line1': "123 Main St", 'locality': "Springfield", 'countrySubd': "IL", 'postal1': "62701", 'oneLine': ADDRESS},
        'assessment': {'assessed': {'assdTtlValue': 300000}, 'market': {'mktTtlValue': 900000}},
    }


def test_autofill_rejects_unknown_provider(client, http):
    response = client.post("/api/property/autofill", json={'provider': "zillow", 'address': ADDRESS})
    assert response.status_code == 400
    assert response.json()['detail'] == "Invalid provider"
    assert http.calls == []


def test_autofill_requires_some_input(client):
    response = client.post("/api/property/autofill", json={'provider': "melissa", 'county': "Sangamon"})
    assert response.status_code == 400


def test_autofill_reports_missing_credential(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "RENTCAST_API_KEY", None)
    response = client.post("/api/property/autofill", json={'provider': "rentcast", 'address': ADDRESS})
    assert response.status_code == 500
    assert response.json()['detail'] == "Missing RENTCAST_API_KEY"


def test_autofill_taxes_without_apn_is_an_empty_result(client):
    response = client.post("/api/property/autofill", json={'provider': "rentcast", 'intent': "taxes", 'address': ADDRESS})
    assert response.status_code == 200
    body = response.json()
    assert body['apn_found'] is False
    assert body['message'] == "APN is required for taxes auto-fill."


def test_autofill_through_attom_with_stored_key(client, http, key_resolver, monkeypatch):
    monkeypatch.setattr(get_settings(), "FRED_APIKEY", None)
    key_resolver.store.values[ATTOM_SETTINGS_KEY] = "stored-key"
    http.add("basicprofile", {'property': [attom_record()]}, stage="address_lookup")

    response = client.post("/api/property/autofill", json={'provider': "ATTOM", 'address': ADDRESS})

    assert response.status_code == 200
    body = response.json()
    assert body['apn_found'] is True
    assert body['apn_lookup_source'] == "address"
    assert body['source_provider'] == "attom"
    assert body['api_snapshot']['fair_market_value'] == 900000
    assert body['housing_crisis_metrics']['status'] == "Unavailable"
    assert http.calls[0].headers['apikey'] == "stored-key"


def test_attom_property_not_found(client, key_resolver):
    key_resolver.store.values[ATTOM_SETTINGS_KEY] = "stored-key"
    response = client.post("/api/attom/property", json={'lat': 39.78, 'lng': -89.65})
    assert response.status_code == 404


def test_attom_property_without_any_key(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "ATTOM_API_KEY", None)
    response = client.post("/api/attom/property", json={'address': ADDRESS})
    assert response.status_code == 500
    assert response.json()['detail'] == "Missing ATTOM_API_KEY"


def test_census_fips(client, http):
    assert client.post("/api/census/fips", json={}).status_code == 400
    assert client.post("/api/census/fips", json={'lat': 39.78, 'lng': -89.65}).status_code == 404

    http.add("geocoder", {'result': {'geographies': {'Counties': [{'GEOID': "17167"}]}}})
    response = client.post("/api/census/fips", json={'lat': "39.78", 'lng': "-89.65"})
    assert response.json() == {'fips_code': "17167", 'source': "US Census Geocoder (coordinates)"}


def test_datausa_county_validation_and_not_found(client):
    assert client.post("/api/datausa/county", json={}).status_code == 400
    response = client.post("/api/datausa/county", json={'fips_code': "99999"})
    assert response.status_code == 404
    assert response.json()['detail'] == "No county demographics found"


def test_attom_key_settings_round_trip(client):
    status = client.get("/api/settings/attom-key").json()
    assert status == {'hasKey': False, 'source': "none", 'maskedKey': None, 'updatedAt': None}

    assert client.post("/api/settings/attom-key", json={'apiKey': "  "}).status_code == 400

    saved = client.post("/api/settings/attom-key", json={'apiKey': "abcdef123456"}).json()
    assert saved['ok'] is True
    assert saved['source'] == "db"
    assert saved['maskedKey'] == "•••••••••456"

    status = client.get("/api/settings/attom-key").json()
    assert status['hasKey'] is True
    assert status['updatedAt'].startswith("2024-01-01")

    cleared = client.delete("/api/settings/attom-key").json()
    assert (cleared['ok'], cleared['hasKey'], cleared['source']) == (True, False, "none")


def test_attom_key_save_without_store(client):
    client.app.dependency_overrides[routes.get_key_resolver] = lambda: AttomKeyResolver(config=Settings())
    assert client.post("/api/settings/attom-key", json={'apiKey': "key"}).status_code == 503


def test_treasury(client, http, monkeypatch):
    monkeypatch.setattr(get_settings(), "FRED_APIKEY", None)
    assert client.get("/api/market/treasury").status_code == 500

    monkeypatch.setattr(get_settings(), "FRED_APIKEY", "fred-key")
    assert client.get("/api/market/treasury").status_code == 502

    http.add("stlouisfed", {'observations': [{'date': "2024-07-03", 'value': "4.36"}]})
    assert client.get("/api/market/treasury").json() == {'us_10_year_treasury': 4.36, 'us_10_year_treasury_date': "2024-07-03"}


def test_reconcile(client):
    response = client.post("/api/reconcile", json={
        'incoming': {'owner_name': "ATTOM Owner", 'acreage': 12.5},
        'current': {'owner_name': "Typed By Hand", 'acreage': ""},
        'api_snapshot': {},
    })
    body = response.json()
    assert body['applied'] == ['acreage']
    assert body['skipped'] == ['owner_name']
    assert body['api_snapshot'] == {'acreage': 12.5}


class RecordingDatabase:
    def __init__(self):
        self.initialize_kwargs = None
        self.closed = False

    @property
    def is_initialized(self):
        return self.initialize_kwargs is not None

    async def initialize(self, **kwargs):
        self.initialize_kwargs = kwargs

    async def close(self):
        self.closed = True


def test_startup_creates_settings_table(monkeypatch):
    from rvval.api import app as app_module

    database = RecordingDatabase()
    monkeypatch.setattr(app_module, "db_manager", database)

    with TestClient(create_app()):
        assert database.initialize_kwargs == {'create_tables': True}

    assert database.closed
