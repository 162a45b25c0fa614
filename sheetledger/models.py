"""SQLAlchemy models for the identifier cache and server-side sessions."""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)
    google_id: str = Column(String(255), unique=True, nullable=False, index=True)
    email: str = Column(String(320), nullable=False)
    access_token: Optional[str] = Column(Text, nullable=True)
    refresh_token: Optional[str] = Column(Text, nullable=True)
    created_at: datetime = Column(DateTime, nullable=False, default=utcnow)
    updated_at: datetime = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    spreadsheets = relationship("UserSpreadsheet", back_populates="user", cascade="all, delete-orphan")


class UserSpreadsheet(Base):
    __tablename__ = "user_spreadsheets"
    __table_args__ = (UniqueConstraint("user_id", "year", name="uq_user_spreadsheets_user_year"),)

    id: int = Column(Integer, primary_key=True, index=True)
    user_id: int = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    year: int = Column(Integer, nullable=False)
    spreadsheet_id: str = Column(String(255), nullable=False)
    created_at: datetime = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="spreadsheets")
    sheets = relationship("UserSheet", back_populates="spreadsheet", cascade="all, delete-orphan")


class UserSheet(Base):
    __tablename__ = "user_sheets"
    __table_args__ = (UniqueConstraint("spreadsheet_id", "month", name="uq_user_sheets_spreadsheet_month"),)

    id: int = Column(Integer, primary_key=True, index=True)
    # Local ``user_spreadsheets.id``, not the Google spreadsheet identifier.
    spreadsheet_id: int = Column(
        Integer, ForeignKey("user_spreadsheets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    month: str = Column(String(16), nullable=False)
    sheet_id: int = Column(Integer, nullable=False)
    created_at: datetime = Column(DateTime, nullable=False, default=utcnow)

    spreadsheet = relationship("UserSpreadsheet", back_populates="sheets")


class SessionRecord(Base):
    __tablename__ = "sessions"

    sid: str = Column(String(64), primary_key=True)
    data: dict = Column(JSON, nullable=False, default=dict)
    expires_at: datetime = Column(DateTime, nullable=False, index=True)
