"""Decision ORM models.

CurrentDecision has content_id as its primary key: at most one current
decision per content id, superseded in place by upsert. DecisionLog keeps
every decision with its triggering scores for the learning loop.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
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


class CurrentDecision(Base):
    __tablename__ = "moderation_decisions"
    __table_args__ = (
        Index("ix_moderation_decisions_action_decided_at", "action", "decided_at"),
    )

    content_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    author_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    content_digest: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    reasons: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    adjusted_spam_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    adjusted_toxicity_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    reputation_multiplier: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    decided_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class DecisionLog(Base):
    __tablename__ = "decision_logs"
    __table_args__ = (Index("ix_decision_logs_content_id", "content_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    content_id: Mapped[str] = mapped_column(String(64), nullable=False)
    author_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    reasons: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    flags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # Raw and adjusted scores plus the thresholds in force at decision time
    scores_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class EnforcementAction(Base):
    """Audit row for hide / warn / restrict / notify side effects."""

    __tablename__ = "moderation_actions"
    __table_args__ = (Index("ix_moderation_actions_user_id", "user_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    content_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    duration_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class ThresholdAdjustment(Base):
    """A learning-loop nudge. Unique per (content, threshold) so replays are no-ops."""

    __tablename__ = "threshold_adjustments"
    __table_args__ = (
        UniqueConstraint("content_id", "name", name="uq_threshold_adjustments_content_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    content_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    delta: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
