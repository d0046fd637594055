"""
AI-assisted candidate selection.

When a provider returns several property records for one lookup, a
generative model is asked to pick the best index. Its answer is validated,
and any failure (no client, timeout, bad JSON, out-of-range index) falls
back to the deterministic AddressMatcher. select() never raises.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import structlog

from ..agent.llm_client import TextCompletion, extract_json_object
from ..agent.prompts import build_candidate_prompt
from ..config import get_settings
from ..exceptions import DisambiguationError
from ..schemas import PropertyCandidate, prompt_payload
from ..utils.address_matcher import AddressMatcher, get_address_matcher

logger = structlog.get_logger(__name__)


class SelectionMethod(Enum):
    NONE = "none"
    SINGLE = "single_candidate"
    AI = "ai"
    DETERMINISTIC = "deterministic"


@dataclass
class SelectionResult:
    """Either a chosen index or the reason the model's answer was rejected."""
    index: Optional[int]
    method: SelectionMethod
    error: Optional[DisambiguationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.index is not None


class CandidateSelector:
    """Picks one candidate, asking the model first when there is a real choice."""

    def __init__(
        self,
        llm: Optional[TextCompletion] = None,
        matcher: Optional[AddressMatcher] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.llm = llm
        self.matcher = matcher or get_address_matcher()
        self.timeout_seconds = timeout_seconds or get_settings().AI_SELECTOR_TIMEOUT_SECONDS

    async def ask_model(
        self,
        candidates: Sequence[PropertyCandidate],
        target: Optional[str],
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> SelectionResult:
        """Query the model once and validate its answer."""
        if self.llm is None:
            return SelectionResult(None, SelectionMethod.AI, DisambiguationError("no model configured"))

        prompt = build_candidate_prompt(prompt_payload(list(candidates)), target, lat, lng)

        try:
            response_text = await asyncio.wait_for(self.llm.complete(prompt), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return SelectionResult(None, SelectionMethod.AI, DisambiguationError("model call timed out"))
        except Exception as e:
            return SelectionResult(None, SelectionMethod.AI, DisambiguationError(f"model call failed: {e}"))

        try:
            answer = extract_json_object(response_text)
        except ValueError as e:
            return SelectionResult(None, SelectionMethod.AI, DisambiguationError(str(e)))

        index = answer.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            return SelectionResult(None, SelectionMethod.AI, DisambiguationError(f"index is not an integer: {index!r}"))
        if not 0 <= index < len(candidates):
            return SelectionResult(None, SelectionMethod.AI, DisambiguationError(f"index out of range: {index}"))

        return SelectionResult(index, SelectionMethod.AI)

    async def select(
        self,
        candidates: Sequence[PropertyCandidate],
        target: Optional[str],
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> SelectionResult:
        """
        Choose the best candidate.

        Args:
            candidates: Projected provider records, in provider order
            target: Raw or normalized address the caller searched for
            lat: Optional latitude of the target
            lng: Optional longitude of the target

        Returns:
            SelectionResult with index None only when there are no candidates
        """
        if not candidates:
            return SelectionResult(None, SelectionMethod.NONE)
        if len(candidates) == 1:
            return SelectionResult(0, SelectionMethod.SINGLE)

        if self.llm is not None:
            picked = await self.ask_model(candidates, target, lat, lng)
            if picked.ok:
                logger.info("ai_selector_picked", index=picked.index, candidates=len(candidates))
                return picked
            logger.warning("ai_selector_fallback", reason=picked.error.reason, candidates=len(candidates))
            fallback_error = picked.error
        else:
            fallback_error = None

        index = self.matcher.best_candidate_index(candidates, target)
        return SelectionResult(index, SelectionMethod.DETERMINISTIC, fallback_error)
