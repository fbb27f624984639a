"""Reputation ORM models.

UserReputation holds one stored profile per user. The overall_score column is
the authoritative score between recomputations and is only ever changed by
whole-row upserts or by atomic column-expression increments.

ReputationLedgerEntry is the append-only points ledger that feeds both the
decayed event component of the overall score and the trend regression.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class UserReputation(Base):
    __tablename__ = "reputation_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    overall_score: Mapped[float] = mapped_column(Float, default=100.0, nullable=False)
    trust_level: Mapped[str] = mapped_column(String(20), default="new", nullable=False)
    factors_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    trend_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    recommendations_json: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Enforcement state
    restriction_level: Mapped[str] = mapped_column(String(20), default="none", nullable=False)
    restriction_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    restriction_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    moderation_strikes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    account_created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_calculated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class ReputationLedgerEntry(Base):
    __tablename__ = "reputation_events"
    __table_args__ = (
        Index("ix_reputation_events_user_id_created_at", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    impact: Mapped[float] = mapped_column(Float, nullable=False)
    weight: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
