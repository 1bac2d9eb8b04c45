"""
Manager deviation - a discount a manager grants against a booking's down
payment, drawn from the manager's deviation allowance for the period.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from app.models.base import MongoModel, PyObjectId, VersionedModel, _utcnow


class DeviationAuthority(VersionedModel):
    """Deviation allowance of one manager. `id` is the manager's user id."""

    manager_name: Optional[str] = None
    total_limit_paise: int = Field(ge=0)
    per_transaction_limit_paise: int = Field(ge=0)
    available_deviation_paise: int = Field(ge=0)
    period_started_at: datetime = Field(default_factory=_utcnow)

    @property
    def used_paise(self) -> int:
        return self.total_limit_paise - self.available_deviation_paise


class ManagerDeviation(MongoModel):
    booking_id: PyObjectId
    manager_id: PyObjectId
    amount_paise: int = Field(gt=0)
    reason: str
    applied_by: PyObjectId
    applied_at: datetime = Field(default_factory=_utcnow)
