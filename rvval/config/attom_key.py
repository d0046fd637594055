"""
ATTOM API key resolution.

An override key saved through the settings endpoint lives in the persisted
settings store and takes precedence over ATTOM_API_KEY from the environment.
Store reads go through a SecretCache so a burst of lookups costs one query.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import structlog

from .secret_cache import SecretCache
from .settings import Settings, get_settings

logger = structlog.get_logger(__name__)

ATTOM_SETTINGS_KEY = "attom_api_key"
MASK_CHAR = "•"


class SettingsStore(Protocol):
    async def get_value(self, key: str) -> Optional[str]: ...

    async def set_value(self, key: str, value: str) -> datetime: ...

    async def get_updated_at(self, key: str) -> Optional[datetime]: ...

    async def delete_value(self, key: str) -> bool: ...


@dataclass
class KeyStatus:
    has_key: bool
    source: str  # "db" | "env" | "none"
    value: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def masked(self) -> Optional[str]:
        return mask_api_key(self.value) if self.value else None


def mask_api_key(value: Optional[str]) -> str:
    """
    Mask an API key for display.

    Example:
        "abcdef123456" -> "•••••••••456"
        "abc"          -> "••••abc"
    """
    if not value:
        return ""
    clean = value.strip()
    if len(clean) <= 4:
        return f"{MASK_CHAR * 4}{clean}"
    return f"{MASK_CHAR * max(6, len(clean) - 3)}{clean[-3:]}"


def _clean_key(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


class AttomKeyResolver:
    """Resolves the effective ATTOM key from the settings store and environment."""

    def __init__(
        self,
        store: Optional[SettingsStore] = None,
        config: Optional[Settings] = None,
        cache: Optional[SecretCache] = None,
    ):
        self.store = store
        self.config = config or get_settings()
        self.cache = cache or SecretCache(ttl_seconds=self.config.ATTOM_KEY_CACHE_TTL_SECONDS)

    async def _read_stored_key(self) -> Optional[str]:
        if self.store is None:
            return None
        try:
            return _clean_key(await self.store.get_value(ATTOM_SETTINGS_KEY))
        except Exception as e:
            # Store outages fall back to the environment key
            logger.warning("attom_key_store_read_failed", error=str(e))
            return None

    async def get_api_key(self) -> Optional[str]:
        stored = await self.cache.get(self._read_stored_key)
        return stored or _clean_key(self.config.ATTOM_API_KEY)

    async def get_status(self) -> KeyStatus:
        stored = await self._read_stored_key()
        if stored:
            updated_at = None
            if self.store is not None:
                updated_at = await self.store.get_updated_at(ATTOM_SETTINGS_KEY)
            return KeyStatus(has_key=True, source="db", value=stored, updated_at=updated_at)

        env_key = _clean_key(self.config.ATTOM_API_KEY)
        if env_key:
            return KeyStatus(has_key=True, source="env", value=env_key)

        return KeyStatus(has_key=False, source="none")

    async def save_api_key(self, api_key: str) -> KeyStatus:
        cleaned = _clean_key(api_key)
        if not cleaned:
            raise ValueError("apiKey is required")
        if self.store is None:
            raise RuntimeError("No settings store configured")

        updated_at = await self.store.set_value(ATTOM_SETTINGS_KEY, cleaned)
        self.cache.invalidate()
        logger.info("attom_key_saved", masked_key=mask_api_key(cleaned))
        return KeyStatus(has_key=True, source="db", value=cleaned, updated_at=updated_at)

    async def clear_api_key(self) -> KeyStatus:
        """Drop the stored override; the environment key applies again"""
        if self.store is None:
            raise RuntimeError("No settings store configured")

        removed = await self.store.delete_value(ATTOM_SETTINGS_KEY)
        self.cache.invalidate()
        logger.info("attom_key_cleared", removed=removed)
        return await self.get_status()


async def resolve_attom_api_key(resolver: Optional[AttomKeyResolver] = None) -> Optional[str]:
    """Effective ATTOM key: the stored override when present, else ATTOM_API_KEY."""
    return await (resolver or AttomKeyResolver()).get_api_key()
