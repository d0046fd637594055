"""
Property resolution entry point.

resolve_property() validates the caller's context, picks the provider
adapter and runs it. Ordinary "not found" comes back as an empty
NormalizedResult; only ConfigurationError and ContextValidationError escape.
"""

from typing import Dict, Optional, Type

import structlog

from ..agent.llm_client import get_completion_client
from ..config.attom_key import AttomKeyResolver, resolve_attom_api_key
from ..exceptions import ContextValidationError
from ..providers.attom import AttomAdapter
from ..providers.base import ProviderAdapter
from ..providers.http import ProviderHttpClient
from ..providers.melissa import MelissaAdapter
from ..providers.rentcast import RentcastAdapter
from ..providers.reportallusa import ReportAllUsaAdapter
from ..schemas import LookupContext, LookupIntent, NormalizedResult
from .candidate_selector import CandidateSelector

logger = structlog.get_logger(__name__)

DEFAULT_PROVIDER = "melissa"
TAXES_NEED_APN = "APN is required for taxes auto-fill."

PROVIDERS: Dict[str, Type[ProviderAdapter]] = {
    "melissa": MelissaAdapter,
    "attom": AttomAdapter,
    "rentcast": RentcastAdapter,
    "reportallusa": ReportAllUsaAdapter,
}

PROVIDER_LABELS = {provider_id: adapter.label for provider_id, adapter in PROVIDERS.items()}


def normalize_provider(provider: Optional[str]) -> str:
    """Provider id for ``provider``; unknown names fall back to Melissa"""
    key = (provider or '').strip().lower()
    return key if key in PROVIDERS else DEFAULT_PROVIDER


def is_known_provider(provider: Optional[str]) -> bool:
    return (provider or '').strip().lower() in PROVIDERS


def validate_context(context: LookupContext) -> None:
    """
    Raises:
        ContextValidationError: if none of APN, address or coordinates is present
    """
    if not context.apn and not context.address and not context.has_coordinates:
        raise ContextValidationError()


def build_selector() -> CandidateSelector:
    return CandidateSelector(llm=get_completion_client())


async def build_adapter(
    provider_id: str,
    http: ProviderHttpClient,
    key_resolver: Optional[AttomKeyResolver] = None,
    selector: Optional[CandidateSelector] = None,
) -> ProviderAdapter:
    selector = selector or build_selector()
    if provider_id == "attom":
        return AttomAdapter(http, api_key=await resolve_attom_api_key(key_resolver) or '', selector=selector)
    if provider_id == "rentcast":
        return RentcastAdapter(http, selector=selector)
    return PROVIDERS[provider_id](http)


async def resolve_property(
    provider: Optional[str],
    context: LookupContext,
    http: Optional[ProviderHttpClient] = None,
    key_resolver: Optional[AttomKeyResolver] = None,
    selector: Optional[CandidateSelector] = None,
) -> NormalizedResult:
    """
    Resolve one property through the chosen provider.

    Args:
        provider: melissa, attom, rentcast or reportallusa
        context: What the caller already knows
        http: Shared transport; a private one is opened when omitted
        key_resolver: Source of the effective ATTOM key
        selector: Candidate selector; built from the configured model when omitted

    Returns:
        NormalizedResult; ``apn_found`` is the success signal

    Raises:
        ContextValidationError: if none of APN, address or coordinates was given
        ConfigurationError: if the provider credential is missing
    """
    provider_id = normalize_provider(provider)

    if context.intent == LookupIntent.TAXES and not context.apn:
        return NormalizedResult.empty(provider_id, TAXES_NEED_APN)
    validate_context(context)

    if http is None:
        async with ProviderHttpClient() as owned_http:
            return await resolve_property(provider_id, context, owned_http, key_resolver, selector)

    adapter = await build_adapter(provider_id, http, key_resolver, selector)
    result = await adapter.lookup(context)
    logger.info(
        "property_resolved",
        provider=provider_id,
        apn_found=result.apn_found,
        source=result.apn_lookup_source.value if result.apn_lookup_source else None,
    )
    return result
