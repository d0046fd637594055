"""
SQLAlchemy ORM models for the persisted settings store.

The resolution engine itself is stateless; the only persisted data is a small
key/value table holding operator-supplied overrides such as the ATTOM API key.
"""

from datetime import datetime

from sqlalchemy import Column, Text, TIMESTAMP
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class AppSetting(Base):
    """Operator-managed configuration overrides"""
    __tablename__ = 'app_settings'

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
    updated_by = Column(Text)

    created_at = Column(TIMESTAMP, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow)
