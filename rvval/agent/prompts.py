"""Prompts for candidate disambiguation"""

import json
from typing import Any, Dict, List, Optional

CANDIDATE_SELECTION_PROMPT = """You match a target property to one of several records returned by a property-data provider.

**Target:**
Address: {target}
Coordinates: {coordinates}

**Candidates (JSON, zero-based "index"):**
{candidates}

**Rules:**
1. Prefer an exact street-number and street-name match over partial matches
2. Use city, state and ZIP to break ties between similar street addresses
3. When only coordinates are known, prefer the candidate nearest to them
4. Never invent a candidate; the answer must be one of the listed indexes

Return ONLY JSON:
{{"index": <integer>}}
"""


def build_candidate_prompt(
    candidates: List[Dict[str, Any]],
    target: Optional[str],
    lat: Optional[float] = None,
    lng: Optional[float] = None,
) -> str:
    coordinates = f"{lat}, {lng}" if lat is not None and lng is not None else "unknown"
    return CANDIDATE_SELECTION_PROMPT.format(
        target=target or "unknown",
        coordinates=coordinates,
        candidates=json.dumps(candidates, separators=(',', ':')),
    )
