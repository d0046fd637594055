"""10-year US Treasury yield from FRED (series DGS10)."""

from dataclasses import dataclass
from typing import Optional

import structlog

from ..config import get_settings
from ..exceptions import MarketRateError, ProviderUnavailable
from ..providers.http import ProviderHttpClient
from ..utils.values import normalize_text, to_number

logger = structlog.get_logger(__name__)

FRED_OBSERVATIONS_ENDPOINT = "https://api.stlouisfed.org/fred/series/observations"
TREASURY_SERIES = "DGS10"


@dataclass
class TreasuryRate:
    rate: float
    date: Optional[str] = None


async def fetch_10_year_treasury(http: ProviderHttpClient, api_key: Optional[str] = None) -> TreasuryRate:
    """
    Latest numeric DGS10 observation.

    FRED reports market holidays as "." so the newest 20 observations are
    scanned for the first numeric value.

    Raises:
        MarketRateError: code missing_key, http_error or malformed_response
    """
    api_key = api_key or get_settings().FRED_APIKEY
    if not api_key:
        raise MarketRateError('missing_key', "FRED_APIKEY is missing.")

    params = {
        'series_id': TREASURY_SERIES,
        'api_key': api_key,
        'file_type': 'json',
        'sort_order': 'desc',
        'limit': 20,
    }
    try:
        result = await http.request_json(FRED_OBSERVATIONS_ENDPOINT, params=params, provider="fred", stage="treasury")
    except ProviderUnavailable as e:
        raise MarketRateError('http_error', f"FRED request failed ({e.detail}).") from e

    if not result.ok:
        raise MarketRateError('http_error', f"FRED request failed (status {result.status}).", result.status)

    observations = result.data.get('observations') if isinstance(result.data, dict) else None
    if not isinstance(observations, list):
        raise MarketRateError('malformed_response', "FRED response malformed: observations array missing.")

    for entry in observations:
        if not isinstance(entry, dict):
            continue
        rate = to_number(entry.get('value'))
        if rate is not None:
            return TreasuryRate(rate=rate, date=normalize_text(entry.get('date')))

    raise MarketRateError('malformed_response', "FRED response malformed: no numeric 10Y observations.")
