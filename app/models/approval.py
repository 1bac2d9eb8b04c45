from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.base import PyObjectId, _utcnow


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalDecision(BaseModel):
    """Who moved an item out of PENDING, and why."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: ApprovalStatus
    decided_by: PyObjectId
    decided_at: datetime = Field(default_factory=_utcnow)
    remark: Optional[str] = None
    rejection_reason: Optional[str] = None
