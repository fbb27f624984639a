"""Pydantic schemas for submitted content."""

import enum
import hashlib
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class ContentType(str, enum.Enum):
    question = "question"
    answer = "answer"
    comment = "comment"
    post = "post"
    story = "story"


class Content(BaseModel):
    """A piece of user-submitted content. Immutable once submitted for analysis."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, max_length=64)
    type: ContentType
    text: str
    author_id: str = Field(min_length=1, max_length=64)
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def digest(self) -> str:
        """Short SHA-256 digest of the text; identifies a content version."""
        return text_digest(self.text)


def text_digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
