# Settings store package

from .connection import DatabaseManager, db_manager
from .models import Base, AppSetting
from .settings_store import AppSettingsStore

__all__ = [
    'DatabaseManager',
    'db_manager',
    'Base',
    'AppSetting',
    'AppSettingsStore',
]
