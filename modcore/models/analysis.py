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
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class ContentAnalysisRecord(Base):
    """One analysis per content version, keyed by (content_id, content_digest)."""

    __tablename__ = "analysis_records"
    __table_args__ = (
        UniqueConstraint(
            "content_id", "content_digest", name="uq_analysis_records_content_digest"
        ),
        Index("ix_analysis_records_author_id", "author_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    content_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content_digest: Mapped[str] = mapped_column(String(16), nullable=False)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), nullable=False)
    spam_score: Mapped[float] = mapped_column(Float, nullable=False)
    quality_score: Mapped[float] = mapped_column(Float, nullable=False)
    toxicity_score: Mapped[float] = mapped_column(Float, nullable=False)
    overall_score: Mapped[int] = mapped_column(Integer, nullable=False)
    recommendation: Mapped[str] = mapped_column(String(10), nullable=False)
    flags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # Full AnalysisResult dump, reloadable with AnalysisResult.model_validate
    result_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
