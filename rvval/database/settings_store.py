"""Key/value access to the app_settings table."""

from datetime import datetime
from typing import Optional

from .connection import DatabaseManager
from .models import AppSetting


class AppSettingsStore:
    """Settings store backed by the app_settings table."""

    def __init__(self, manager: DatabaseManager):
        self.manager = manager

    async def get_value(self, key: str) -> Optional[str]:
        async with self.manager.get_session() as session:
            row = await session.get(AppSetting, key)
            return row.value if row else None

    async def get_updated_at(self, key: str) -> Optional[datetime]:
        async with self.manager.get_session() as session:
            row = await session.get(AppSetting, key)
            return row.updated_at if row else None

    async def set_value(self, key: str, value: str, updated_by: Optional[str] = None) -> datetime:
        now = datetime.utcnow()
        async with self.manager.get_session() as session:
            row = await session.get(AppSetting, key)
            if row is None:
                row = AppSetting(key=key, value=value, updated_by=updated_by, created_at=now, updated_at=now)
                session.add(row)
            else:
                row.value = value
                row.updated_by = updated_by
                row.updated_at = now
            await session.commit()
        return now

    async def delete_value(self, key: str) -> bool:
        async with self.manager.get_session() as session:
            row = await session.get(AppSetting, key)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True
