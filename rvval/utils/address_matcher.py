"""
Address Normalization and Candidate Scoring

Splits free-text addresses into the parts provider APIs expect and picks the
best of several property candidates for a target address. Scoring is
deterministic and side-effect free so it can always stand in when the
AI-assisted selector is unavailable or wrong.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from ..schemas import PropertyCandidate

# Score weights
EXACT_MATCH = 100
CONTAINS_MATCH = 50
ZIP_MATCH = 10
NUMBER_MATCH = 5
STATE_MATCH = 5
CITY_MATCH = 5


@dataclass
class AddressParts:
    line1: str
    city: str = ''
    state: str = ''
    zip_code: str = ''


class AddressMatcher:
    """
    Address normalization and candidate scoring for property lookups
    """

    COUNTRY_SUFFIX = re.compile(r',?\s*USA$', re.IGNORECASE)
    NON_ALNUM = re.compile(r'[^a-z0-9]')
    ZIP_PATTERN = re.compile(r'\b(\d{5})(?:-\d{4})?\b')
    NUMBER_TOKEN = re.compile(r'\d+')
    # "123 Main St Springfield IL 62701" without commas
    TRAILING_CITY_STATE_ZIP = re.compile(r'^(.*)\s+([A-Za-z\s]+)\s+([A-Z]{2})\s+(\d{5}(?:-\d{4})?)$')

    def normalize_address(self, address: Optional[str]) -> str:
        """
        Clean an address for re-querying a provider.

        Example:
            "123  Main St, Springfield, IL 62701, USA" -> "123 Main St, Springfield, IL 62701"
        """
        if not address:
            return ""
        cleaned = self.COUNTRY_SUFFIX.sub('', address.strip())
        return ' '.join(cleaned.split())

    def normalize_for_match(self, value: Optional[str]) -> str:
        """Lower-case with every non-alphanumeric character removed"""
        return self.NON_ALNUM.sub('', (value or '').lower())

    def split_address(self, address: str) -> Dict[str, str]:
        """
        Split into the address1/address2 pair ATTOM expects.

        Example:
            "123 Main St, Springfield, IL 62701" -> {"address1": "123 Main St", "address2": "Springfield IL 62701"}
        """
        normalized = self.normalize_address(address)
        parts = [part.strip() for part in normalized.split(',') if part.strip()]

        if len(parts) >= 2:
            return {'address1': parts[0], 'address2': ' '.join(parts[1:])}

        match = self.TRAILING_CITY_STATE_ZIP.match(normalized)
        if match:
            return {
                'address1': match.group(1).strip(),
                'address2': f"{match.group(2).strip()} {match.group(3)} {match.group(4)}",
            }

        return {'address1': normalized, 'address2': ''}

    def split_address_parts(self, address: Optional[str]) -> AddressParts:
        """
        Split into line1/city/state/zip for providers that take separate fields.

        Example:
            "123 Main St, Springfield, IL 62701" -> AddressParts("123 Main St", "Springfield", "IL", "62701")
        """
        normalized = self.normalize_address(address)
        parts = [part.strip() for part in normalized.split(',') if part.strip()]
        if len(parts) < 2:
            return AddressParts(line1=normalized)

        state_zip = (parts[2] if len(parts) > 2 else '').split()
        return AddressParts(
            line1=parts[0],
            city=parts[1],
            state=state_zip[0] if state_zip else '',
            zip_code=state_zip[1] if len(state_zip) > 1 else '',
        )

    def score_candidate(self, candidate: PropertyCandidate, target: str) -> int:
        """
        Additive score of one candidate against the target text.

        Args:
            candidate: Projected property candidate
            target: Raw or normalized target address

        Returns:
            Score, higher is better
        """
        target_key = self.normalize_for_match(target)
        candidate_text = candidate.address_text
        candidate_key = self.normalize_for_match(candidate_text)
        target_lower = target.lower()
        score = 0

        if candidate_key and target_key:
            if candidate_key == target_key:
                score += EXACT_MATCH
            elif candidate_key in target_key or target_key in candidate_key:
                score += CONTAINS_MATCH

        candidate_zip = (candidate.zip_code or '')[:5]
        if candidate_zip and candidate_zip in self.ZIP_PATTERN.findall(target):
            score += ZIP_MATCH

        candidate_lower = candidate_text.lower()
        if any(token in candidate_lower for token in self.NUMBER_TOKEN.findall(target)):
            score += NUMBER_MATCH

        if candidate.state and candidate.state.lower() in re.findall(r'[a-z]+', target_lower):
            score += STATE_MATCH

        if candidate.city and candidate.city.lower() in target_lower:
            score += CITY_MATCH

        return score

    def best_candidate_index(self, candidates: Sequence[PropertyCandidate], target: Optional[str]) -> int:
        """
        Index of the highest scoring candidate; ties go to the earliest.

        Returns 0 when the target is empty.
        """
        if not candidates or not target or not target.strip():
            return 0

        best_index = 0
        best_score = -1
        for position, candidate in enumerate(candidates):
            score = self.score_candidate(candidate, target)
            if score > best_score:
                best_index = position
                best_score = score
        return best_index


# Global instance
_matcher = None


def get_address_matcher() -> AddressMatcher:
    """Get global address matcher instance"""
    global _matcher
    if _matcher is None:
        _matcher = AddressMatcher()
    return _matcher
