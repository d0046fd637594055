"""
ATTOM lookup cascade.

Resolves one property through an ordered chain of lookups and then enriches
it:

    ParcelLookup -> AddressLookup -> NormalizedAddressLookup -> GeoLookup
        -> DetailEnrichment -> ExpandedEnrichment -> ParcelReenrichment -> Done

The first lookup that yields a property ends disambiguation. The enrichment
passes always run once a property is known and each merges into a versioned
PropertyRecord. A failed HTTP call only means "no match" for its state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Dict, List, Optional

import structlog

from ..providers.attom_client import (
    AttomClient,
    extract_address_lines,
    extract_apn,
    extract_attom_id,
    extract_fips,
    extract_properties,
    one_line_address,
    project_candidates,
)
from ..utils.address_matcher import AddressMatcher, get_address_matcher
from ..utils.values import is_empty_value, normalize_apn, normalize_fips
from .candidate_selector import CandidateSelector

logger = structlog.get_logger(__name__)

# Per-block merge strategy for enrichment passes
SHALLOW_MERGE_BLOCKS = frozenset({'address', 'summary', 'lot'})
REPLACE_BLOCKS = frozenset({'assessment', 'tax'})


class CascadeState(str, Enum):
    PARCEL_LOOKUP = "parcel_lookup"
    ADDRESS_LOOKUP = "address_lookup"
    NORMALIZED_ADDRESS_LOOKUP = "normalized_address_lookup"
    GEO_LOOKUP = "geo_lookup"
    DETAIL_ENRICHMENT = "detail_enrichment"
    EXPANDED_ENRICHMENT = "expanded_enrichment"
    PARCEL_REENRICHMENT = "parcel_reenrichment"
    DONE = "done"


class MatchSource(str, Enum):
    PARCEL_FIPS = "parcel_fips"
    ADDRESS = "address"
    NORMALIZED_ADDRESS = "normalized_address"
    GEO_SNAPSHOT = "geo_snapshot"


def _merge_block(current: Any, incoming: Any) -> Any:
    if not isinstance(incoming, dict):
        return current if incoming is None else incoming
    merged = dict(current) if isinstance(current, dict) else {}
    for key, value in incoming.items():
        if not is_empty_value(value):
            merged[key] = value
    return merged


@dataclass
class PropertyRecord:
    """
    The property being resolved, updated one partial record at a time.

    address/summary/lot are merged key by key with non-blank new values
    winning; assessment/tax are replaced wholesale only when the update
    carries them; every other top-level key takes the new value when it is
    not None.
    """
    data: Dict[str, Any] = field(default_factory=dict)
    version: int = 0

    def apply(self, update: Dict[str, Any]) -> None:
        merged = dict(self.data)
        for key, value in update.items():
            if key in SHALLOW_MERGE_BLOCKS:
                merged[key] = _merge_block(merged.get(key), value)
            elif key in REPLACE_BLOCKS:
                if value:
                    merged[key] = value
            elif value is not None:
                merged[key] = value
        self.data = merged
        self.version += 1

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass
class CascadeOutcome:
    record: Optional[PropertyRecord] = None
    payload: Optional[Dict[str, Any]] = None
    source: Optional[MatchSource] = None
    attom_id: Optional[str] = None
    trail: List[CascadeState] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.record is not None

    @property
    def property(self) -> Dict[str, Any]:
        return self.record.data if self.record else {}


class LookupCascade:
    """Drives one resolution against the ATTOM client."""

    def __init__(
        self,
        client: AttomClient,
        selector: Optional[CandidateSelector] = None,
        matcher: Optional[AddressMatcher] = None,
    ):
        self.client = client
        self.matcher = matcher or get_address_matcher()
        self.selector = selector or CandidateSelector(matcher=self.matcher)

    async def _pick(
        self,
        payload: Optional[Dict[str, Any]],
        target: Optional[str],
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        records = extract_properties(payload)
        if not records:
            return None
        selection = await self.selector.select(project_candidates(records), target, lat, lng)
        if selection.index is None:
            return None
        return records[selection.index]

    async def run(
        self,
        *,
        apn: Optional[str] = None,
        fips: Optional[str] = None,
        address: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        stages: Optional[Collection[CascadeState]] = None,
    ) -> CascadeOutcome:
        """
        Resolve and enrich a property.

        Args:
            apn: Parcel number, used only together with fips
            fips: 5-digit county FIPS
            address: Free-text address as typed by the user
            lat: Latitude, used only together with lng
            lng: Longitude
            stages: Lookup states allowed to run; None allows all. Inputs whose
                lookup is excluded still rank the candidates of the others.

        Returns:
            CascadeOutcome; ``found`` is False when every lookup came back empty
        """
        def allowed(state: CascadeState) -> bool:
            return stages is None or state in stages

        outcome = CascadeOutcome()
        property_data = None
        raw_address = (address or '').strip()
        normalized_address = self.matcher.normalize_address(raw_address)
        target = normalized_address or raw_address or None
        parcel_apn = normalize_apn(apn)
        parcel_fips = normalize_fips(fips)

        if parcel_apn and parcel_fips and allowed(CascadeState.PARCEL_LOOKUP):
            outcome.trail.append(CascadeState.PARCEL_LOOKUP)
            payload = await self.client.basic_profile_by_parcel(parcel_apn, parcel_fips)
            property_data = await self._pick(payload, target, lat, lng)
            if property_data:
                outcome.payload, outcome.source = payload, MatchSource.PARCEL_FIPS

        if property_data is None and raw_address and allowed(CascadeState.ADDRESS_LOOKUP):
            outcome.trail.append(CascadeState.ADDRESS_LOOKUP)
            payload = await self.client.basic_profile_by_address(raw_address)
            property_data = await self._pick(payload, raw_address, lat, lng)
            if property_data:
                outcome.payload, outcome.source = payload, MatchSource.ADDRESS

            elif normalized_address and normalized_address != raw_address and allowed(CascadeState.NORMALIZED_ADDRESS_LOOKUP):
                outcome.trail.append(CascadeState.NORMALIZED_ADDRESS_LOOKUP)
                payload = await self.client.basic_profile_by_address(normalized_address, stage="normalized_address_lookup")
                property_data = await self._pick(payload, normalized_address, lat, lng)
                if property_data:
                    outcome.payload, outcome.source = payload, MatchSource.NORMALIZED_ADDRESS

        if property_data is None and lat is not None and lng is not None and allowed(CascadeState.GEO_LOOKUP):
            outcome.trail.append(CascadeState.GEO_LOOKUP)
            payload = await self.client.snapshot_by_geo(lat, lng)
            property_data = await self._pick(payload, target, lat, lng)
            if property_data:
                outcome.payload, outcome.source = payload, MatchSource.GEO_SNAPSHOT

        if property_data is None:
            logger.info("attom_cascade_no_match", stages=[state.value for state in outcome.trail])
            outcome.trail.append(CascadeState.DONE)
            return outcome

        record = PropertyRecord()
        record.apply(property_data)
        outcome.record = record
        outcome.attom_id = extract_attom_id(record.data)

        await self._enrich(outcome, target, parcel_fips, lat, lng)

        outcome.trail.append(CascadeState.DONE)
        logger.info(
            "attom_cascade_resolved",
            source=outcome.source.value,
            version=record.version,
            stages=[state.value for state in outcome.trail],
        )
        return outcome

    async def _enrich(
        self,
        outcome: CascadeOutcome,
        target: Optional[str],
        known_fips: Optional[str],
        lat: Optional[float],
        lng: Optional[float],
    ) -> None:
        record = outcome.record

        if outcome.attom_id:
            outcome.trail.append(CascadeState.DETAIL_ENRICHMENT)
            detail = extract_properties(await self.client.detail(outcome.attom_id))
            if detail:
                record.apply(detail[0])

        lines = extract_address_lines(record.data, target or '')
        if lines.get('address1'):
            outcome.trail.append(CascadeState.EXPANDED_ENRICHMENT)
            payload = await self.client.expanded_profile(lines['address1'], lines.get('address2', ''))
            expanded = await self._pick(payload, one_line_address(record.data) or target, lat, lng)
            if expanded:
                record.apply(expanded)

        derived_apn = normalize_apn(extract_apn(record.data))
        derived_fips = extract_fips(record.data) or known_fips
        if derived_apn and derived_fips:
            outcome.trail.append(CascadeState.PARCEL_REENRICHMENT)
            payload = await self.client.basic_profile_by_parcel(derived_apn, derived_fips)
            reenriched = await self._pick(payload, one_line_address(record.data) or target, lat, lng)
            if reenriched:
                record.apply(reenriched)

        if not outcome.attom_id:
            outcome.attom_id = extract_attom_id(record.data)
