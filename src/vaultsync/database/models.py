"""Database models for sync state."""

from datetime import datetime, timezone
from typing import Optional
from enum import Enum

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, Boolean
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, ConfigDict


Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PassStatus(str, Enum):
    """Status of a recorded sync pass."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    CANCELLED = "cancelled"
    FAILED = "failed"


# SQLAlchemy Models (Database Tables)

class SyncedFileModel(Base):
    """Last-known-synced state of one alias."""

    __tablename__ = "synced_files"

    alias = Column(String(1024), primary_key=True)
    path = Column(Text, nullable=False)
    sequence_tag = Column(BigInteger, nullable=False)
    synced_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<SyncedFileModel(alias='{self.alias}', path='{self.path}', tag={self.sequence_tag})>"


class SyncPassModel(Base):
    """History of reconciliation passes."""

    __tablename__ = "sync_passes"

    id = Column(Integer, primary_key=True, index=True)
    trigger = Column(String(50), nullable=False)

    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    status = Column(String(30), default=PassStatus.IN_PROGRESS.value, nullable=False)

    # Results
    uploaded = Column(Integer, default=0, nullable=False)
    downloaded = Column(Integer, default=0, nullable=False)
    diverged = Column(Integer, default=0, nullable=False)
    deleted = Column(Integer, default=0, nullable=False)
    skipped = Column(Integer, default=0, nullable=False)
    errors = Column(Integer, default=0, nullable=False)
    cancelled = Column(Boolean, default=False, nullable=False)

    summary = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)

    def __repr__(self):
        return f"<SyncPassModel(id={self.id}, trigger='{self.trigger}', status='{self.status}')>"


# Pydantic Models (Transfer Objects)

class SyncedFileResponse(BaseModel):
    """Pydantic model for a synced file record."""
    alias: str
    path: str
    sequence_tag: int
    synced_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SyncPassResponse(BaseModel):
    """Pydantic model for a recorded pass."""
    id: int
    trigger: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: str
    uploaded: int
    downloaded: int
    diverged: int
    deleted: int
    skipped: int
    errors: int
    cancelled: bool
    summary: Optional[str] = None
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
