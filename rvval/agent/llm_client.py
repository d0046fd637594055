"""
Generative-text client used for candidate disambiguation.

Wraps the google-genai SDK behind a single ``complete(prompt) -> text``
call so the selector can be driven by any object with that method.
"""

import json
import re
from typing import Any, Dict, Optional, Protocol

import structlog
from google import genai
from google.genai import types

from ..config import get_settings

logger = structlog.get_logger(__name__)

CODE_BLOCK = re.compile(r'```(?:json)?\s*(\{.*?\})\s*```', re.DOTALL)
ANY_OBJECT = re.compile(r'\{.*\}', re.DOTALL)


class TextCompletion(Protocol):
    async def complete(self, prompt: str) -> str: ...


class GeminiCompletion:
    """Gemini-backed text completion (JSON response mode, temperature 0)."""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        config = get_settings()
        self.api_key = api_key or config.GEMINI_API_KEY
        if not self.api_key:
            raise ValueError("Gemini API key required")

        self.client = genai.Client(api_key=self.api_key)
        self.model_name = model_name or config.GEMINI_MODEL

        logger.info("gemini_completion_initialized", model=self.model_name, sdk="google-genai")

    async def complete(self, prompt: str) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=0.0,
                response_mime_type="application/json",
            )
        )
        return response.text or ""


def extract_json_object(response_text: str) -> Dict[str, Any]:
    """
    Parse the first JSON object out of a model response.

    Tries the whole text, then a fenced ```json block, then the widest {...} span.

    Raises:
        ValueError: if no JSON object can be decoded
    """
    text = (response_text or "").strip()
    attempts = [text]

    code_block_match = CODE_BLOCK.search(text)
    if code_block_match:
        attempts.append(code_block_match.group(1))

    json_match = ANY_OBJECT.search(text)
    if json_match:
        attempts.append(json_match.group())

    for attempt in attempts:
        try:
            parsed = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ValueError(f"no JSON object in model response: {text[:200]!r}")


def get_completion_client() -> Optional[GeminiCompletion]:
    """Gemini client when GEMINI_API_KEY is configured, else None."""
    if not get_settings().GEMINI_API_KEY:
        return None
    return GeminiCompletion()
