"""
FastAPI routes for property resolution, area metrics and field reconciliation.
"""

from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..config.attom_key import AttomKeyResolver, resolve_attom_api_key
from ..database import AppSettingsStore, db_manager
from ..demographics.area_metrics import resolve_area_metrics
from ..demographics.fips import SOURCE_COUNTY_NAME, SOURCE_GEOCODER, FipsResolver
from ..exceptions import ConfigurationError, ContextValidationError, MarketRateError
from ..providers.attom import AttomAdapter
from ..providers.http import ProviderHttpClient
from ..schemas import LookupContext
from ..services.candidate_selector import CandidateSelector
from ..services.market_rates import fetch_10_year_treasury
from ..services.property_resolver import build_selector, is_known_provider, resolve_property, validate_context
from ..services.reconciliation import reconcile_fields
from ..utils.logging import get_logger
from ..utils.values import normalize_text, to_number

logger = get_logger(__name__)
router = APIRouter(tags=["Property Resolution"])

_key_resolver: Optional[AttomKeyResolver] = None


class AutofillRequest(LookupContext):
    provider: Optional[str] = None
    fips: Optional[str] = None

    def to_context(self) -> LookupContext:
        data = self.model_dump(exclude={'provider', 'fips'})
        data['fips_code'] = self.fips_code or self.fips
        return LookupContext(**data)


class FipsRequest(BaseModel):
    lat: Optional[Any] = None
    lng: Optional[Any] = None
    state: Optional[str] = None
    county: Optional[str] = None


class CountyRequest(BaseModel):
    fips_code: Optional[str] = None


class AttomKeyRequest(BaseModel):
    apiKey: Optional[str] = None


class ReconcileRequest(BaseModel):
    incoming: Dict[str, Any] = Field(default_factory=dict)
    current: Dict[str, Any] = Field(default_factory=dict)
    defaults: Dict[str, Any] = Field(default_factory=dict)
    api_snapshot: Dict[str, Any] = Field(default_factory=dict)


async def get_http_client() -> AsyncIterator[ProviderHttpClient]:
    async with ProviderHttpClient() as http:
        yield http


def get_key_resolver() -> AttomKeyResolver:
    """Process-wide resolver so the override key cache outlives a request"""
    global _key_resolver
    if _key_resolver is None:
        store = AppSettingsStore(db_manager) if db_manager.is_initialized else None
        _key_resolver = AttomKeyResolver(store=store)
    return _key_resolver


def get_selector() -> CandidateSelector:
    return build_selector()


def configuration_failure(error: ConfigurationError) -> HTTPException:
    logger.error("missing_credential", credential=error.credential, provider=error.provider)
    return HTTPException(status_code=500, detail=f"Missing {error.credential}")


@router.post("/property/autofill")
async def property_autofill(
    request: AutofillRequest,
    http: ProviderHttpClient = Depends(get_http_client),
    key_resolver: AttomKeyResolver = Depends(get_key_resolver),
    selector: CandidateSelector = Depends(get_selector),
) -> Dict[str, Any]:
    """Resolve APN, financials and area metrics through one provider"""
    if not is_known_provider(request.provider):
        raise HTTPException(status_code=400, detail="Invalid provider")

    try:
        result = await resolve_property(request.provider, request.to_context(), http, key_resolver, selector)
        return result.model_dump(mode="json")

    except ContextValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConfigurationError as e:
        raise configuration_failure(e)
    except Exception as e:
        logger.error("property_autofill_failed", provider=request.provider, error=str(e))
        raise HTTPException(status_code=500, detail="Property autofill failed")


@router.post("/attom/property")
async def attom_property(
    request: AutofillRequest,
    http: ProviderHttpClient = Depends(get_http_client),
    key_resolver: AttomKeyResolver = Depends(get_key_resolver),
    selector: CandidateSelector = Depends(get_selector),
) -> Dict[str, Any]:
    """Full ATTOM cascade with every known input, plus area metrics"""
    context = request.to_context()
    try:
        validate_context(context)
        adapter = AttomAdapter(http, api_key=await resolve_attom_api_key(key_resolver) or '', selector=selector)
        report = await adapter.resolve(
            context,
            apn=context.apn,
            fips=context.fips_code,
            address=context.address,
            lat=context.lat,
            lng=context.lng,
        )

    except ContextValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConfigurationError as e:
        raise configuration_failure(e)
    except Exception as e:
        logger.error("attom_property_failed", error=str(e))
        raise HTTPException(status_code=500, detail="ATTOM lookup failed")

    if report is None:
        raise HTTPException(status_code=404, detail="No property data found")
    return report.to_response()


@router.post("/census/fips")
async def census_fips(request: FipsRequest, http: ProviderHttpClient = Depends(get_http_client)) -> Dict[str, Any]:
    """County FIPS from coordinates, else from state and county name"""
    lat, lng = to_number(request.lat), to_number(request.lng)
    state, county = normalize_text(request.state), normalize_text(request.county)
    resolver = FipsResolver(http)

    if lat is not None and lng is not None:
        fips_code = await resolver.by_coordinates(lat, lng)
        if not fips_code:
            raise HTTPException(status_code=404, detail="No county GEOID found for coordinates")
        return {'fips_code': fips_code, 'source': SOURCE_GEOCODER}

    if not state or not county:
        raise HTTPException(status_code=400, detail="lat/lng or state/county are required")

    fips_code = await resolver.by_state_county(state, county)
    if not fips_code:
        raise HTTPException(status_code=404, detail="No FIPS match found")
    return {'fips_code': fips_code, 'source': SOURCE_COUNTY_NAME}


@router.post("/datausa/county")
async def datausa_county(request: CountyRequest, http: ProviderHttpClient = Depends(get_http_client)) -> Dict[str, Any]:
    """County demographics, economics and housing supply for a FIPS code"""
    if not normalize_text(request.fips_code):
        raise HTTPException(status_code=400, detail="fips_code is required")

    try:
        report = await resolve_area_metrics(request.fips_code, http)
    except Exception as e:
        logger.error("county_metrics_failed", fips=request.fips_code, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch county demographics")

    if not report.found:
        raise HTTPException(status_code=404, detail="No county demographics found")
    return report.to_response()


@router.get("/settings/attom-key")
async def get_attom_key_status(key_resolver: AttomKeyResolver = Depends(get_key_resolver)) -> Dict[str, Any]:
    """Where the effective ATTOM key comes from, masked"""
    try:
        status = await key_resolver.get_status()
    except Exception as e:
        logger.error("attom_key_status_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to load ATTOM key status")

    return {
        'hasKey': status.has_key,
        'source': status.source,
        'maskedKey': status.masked,
        'updatedAt': status.updated_at.isoformat() if status.updated_at else None,
    }


@router.post("/settings/attom-key")
async def save_attom_key(request: AttomKeyRequest, key_resolver: AttomKeyResolver = Depends(get_key_resolver)) -> Dict[str, Any]:
    """Store an ATTOM override key"""
    try:
        status = await key_resolver.save_api_key(request.apiKey or '')
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("attom_key_save_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to save ATTOM key")

    return {
        'ok': True,
        'hasKey': status.has_key,
        'source': status.source,
        'maskedKey': status.masked,
        'updatedAt': status.updated_at.isoformat() if status.updated_at else None,
    }


@router.delete("/settings/attom-key")
async def clear_attom_key(key_resolver: AttomKeyResolver = Depends(get_key_resolver)) -> Dict[str, Any]:
    """Remove the ATTOM override key"""
    try:
        status = await key_resolver.clear_api_key()
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("attom_key_clear_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to clear ATTOM key")

    return {
        'ok': True,
        'hasKey': status.has_key,
        'source': status.source,
        'maskedKey': status.masked,
    }


@router.get("/market/treasury")
async def market_treasury(http: ProviderHttpClient = Depends(get_http_client)) -> Dict[str, Any]:
    """Latest 10-year US Treasury yield"""
    try:
        rate = await fetch_10_year_treasury(http)
    except MarketRateError as e:
        status_code = 500 if e.code == 'missing_key' else 502
        raise HTTPException(status_code=status_code, detail=str(e))

    return {'us_10_year_treasury': rate.rate, 'us_10_year_treasury_date': rate.date}


@router.post("/reconcile")
async def reconcile(request: ReconcileRequest) -> Dict[str, Any]:
    """Decide which automated values may overwrite the caller's fields"""
    result = reconcile_fields(request.incoming, request.current, request.defaults, request.api_snapshot)
    return {
        'applied': result.applied,
        'skipped': result.skipped,
        'values': result.values,
        'api_snapshot': result.api_snapshot,
    }
