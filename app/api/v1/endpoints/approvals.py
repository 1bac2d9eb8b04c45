from fastapi import APIRouter, Depends, Query

from app.core.auth import Actor, get_current_actor
from app.schemas.broker_ledger import PendingApprovals
from app.schemas.common import Envelope
from app.services.broker_ledger_service import BrokerLedgerService

router = APIRouter()


@router.get("/pending", response_model=Envelope[PendingApprovals])
async def pending_approvals(
    limit: int = Query(default=100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor)
):
    """Ledger entries and broker transactions waiting for a decision"""
    pending = await BrokerLedgerService.pending_approvals(limit)
    return Envelope(data=pending)
