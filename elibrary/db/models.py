from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime

from elibrary.db.base import Base


class LocalCart(Base):
    """Server-side stand-in for the browser's local storage: one JSON cart per storage key."""

    __tablename__ = "local_carts"

    storage_key = Column(String(255), primary_key=True)
    payload = Column(Text, nullable=False, default="[]")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
