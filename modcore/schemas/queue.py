"""Schemas for moderation queue items and enforcement audit records.

These are the records an external moderator-facing admin surface reads.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from modcore.schemas.decision import QueueType


class QueueStatus(str, enum.Enum):
    pending = "pending"
    assigned = "assigned"
    resolved = "resolved"


class QueueItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    content_id: str
    content_type: Optional[str] = None
    queue_type: QueueType
    priority: int
    reason: str
    added_by: str
    status: QueueStatus
    assigned_to: Optional[str] = None
    escalation_level: int = 0
    created_at: Optional[datetime] = None


class ModerationActionRecord(BaseModel):
    """Audit row for an enforcement side effect (hide, warn, restrict...)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    content_id: Optional[str] = None
    user_id: Optional[str] = None
    action_type: str
    reason: str
    performed_by: str
    duration_hours: Optional[int] = None
    created_at: Optional[datetime] = None
