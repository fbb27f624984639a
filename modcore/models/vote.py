import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class FeedbackVoteRecord(Base):
    __tablename__ = "feedback_votes"
    __table_args__ = (
        UniqueConstraint("content_id", "voter_id", name="uq_feedback_votes_content_id_voter_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    content_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    voter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    original_action: Mapped[str] = mapped_column(String(10), nullable=False)
    was_accurate: Mapped[bool] = mapped_column(Boolean, nullable=False)
    suggested_action: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    categories: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weight: Mapped[float] = mapped_column(Float, nullable=False)
    voter_reputation: Mapped[float] = mapped_column(Float, nullable=False)
    voter_trust_level: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class OverrideRecommendationRecord(Base):
    """Queued for administrator review; never applied automatically."""

    __tablename__ = "override_recommendations"
    __table_args__ = (
        Index("ix_override_recommendations_content_id_status", "content_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    content_id: Mapped[str] = mapped_column(String(64), nullable=False)
    original_action: Mapped[str] = mapped_column(String(10), nullable=False)
    recommended_action: Mapped[str] = mapped_column(String(10), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    total_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    expert_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    agreement_rate: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending_review", nullable=False)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
