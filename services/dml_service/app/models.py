"""
Stored record model for the local record store.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON

from .database import Base


class StoredRecord(Base):
    """One CRM record (any sObject type) with its field values kept as JSON."""

    __tablename__ = "records"
    # Row numbers feed the generated record ids, so they must never be reused.
    __table_args__ = {"sqlite_autoincrement": True}

    pk = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(18), unique=True, index=True, nullable=True)
    sobject = Column(String(40), nullable=False, index=True)
    fields = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def to_dict(self) -> dict:
        return {"Id": self.record_id, **(self.fields or {})}

    def __repr__(self):
        return f"<StoredRecord(id={self.record_id}, sobject='{self.sobject}')>"
