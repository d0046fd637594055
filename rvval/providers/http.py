"""
Shared HTTP transport for provider lookups.

Every outbound call carries an explicit total timeout. Timeouts, transport
errors, non-2xx responses and malformed JSON all come back as None from
get_json() so the caller simply moves on to its next lookup strategy.
"""
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
import structlog

from ..config import get_settings
from ..exceptions import ProviderUnavailable

logger = structlog.get_logger(__name__)

USER_AGENT = "rvval/0.1"


@dataclass
class HttpResult:
    ok: bool
    status: int
    data: Any = None


def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, str]:
    return {key: str(value) for key, value in (params or {}).items() if value is not None and value != ''}


class ProviderHttpClient:
    """aiohttp session wrapper used by every provider adapter and data source."""

    def __init__(self, timeout_seconds: Optional[float] = None, session: Optional[aiohttp.ClientSession] = None):
        self.timeout_seconds = timeout_seconds or get_settings().PROVIDER_TIMEOUT_SECONDS
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.cleanup()

    async def initialize(self) -> None:
        if self.session is None:
            timeout_config = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(
                timeout=timeout_config,
                headers={'User-Agent': USER_AGENT, 'Accept': 'application/json'}
            )
            self._owns_session = True

    async def cleanup(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def request_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        provider: str,
        stage: str,
    ) -> HttpResult:
        """
        GET ``url`` and decode the JSON body.

        Raises:
            ProviderUnavailable: on timeout, transport error, or undecodable body
        """
        if self.session is None:
            await self.initialize()

        try:
            async with self.session.get(url, params=_clean_params(params), headers=headers) as response:
                if not 200 <= response.status < 300:
                    return HttpResult(ok=False, status=response.status)
                try:
                    data = await response.json(content_type=None)
                except (json.JSONDecodeError, ValueError) as e:
                    raise ProviderUnavailable(provider, stage, f"malformed JSON: {e}") from e
                return HttpResult(ok=True, status=response.status, data=data)

        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(provider, stage, f"timed out after {self.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            raise ProviderUnavailable(provider, stage, str(e)) from e

    async def get_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        provider: str,
        stage: str,
        not_found: Any = None,
    ) -> Any:
        """
        GET JSON, degrading every failure to None.

        Args:
            not_found: Value returned for a 404 instead of None (e.g. [] for list endpoints)
        """
        try:
            result = await self.request_json(url, params=params, headers=headers, provider=provider, stage=stage)
        except ProviderUnavailable as e:
            logger.warning("provider_request_failed", provider=e.provider, stage=e.stage, error=e.detail)
            return None

        if result.status == 404 and not_found is not None:
            return not_found
        if not result.ok:
            logger.warning("provider_non_2xx", provider=provider, stage=stage, status=result.status)
            return None
        return result.data
