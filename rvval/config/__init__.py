"""Configuration management for property resolution."""
from .settings import settings, Settings, get_settings
from .secret_cache import SecretCache
from .attom_key import AttomKeyResolver, KeyStatus, mask_api_key

__all__ = [
    'settings',
    'Settings',
    'get_settings',
    'SecretCache',
    'AttomKeyResolver',
    'KeyStatus',
    'mask_api_key',
]
