"""Option model for key-value persisted settings."""
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from ytfield.db.database import Base


class Option(Base):
    """A single persisted option, stored as JSON text."""

    __tablename__ = "options"

    key = Column(String(191), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Option(key='{self.key}')>"
