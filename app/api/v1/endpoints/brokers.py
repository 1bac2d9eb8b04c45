from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.auth import Actor, get_current_actor
from app.models.approval import ApprovalStatus
from app.schemas.broker_ledger import BrokerLedgerResponse, BrokerStatement, BrokerSummary, BrokerTransactionCreate
from app.schemas.common import Envelope, Page
from app.schemas.ledger import ApproveRequest, RejectRequest
from app.services.broker_ledger_service import BrokerLedgerService
from app.services.receipt_service import page_count

router = APIRouter()


@router.get("/summary", response_model=Envelope[Page[BrokerSummary]])
async def list_summaries(
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    actor: Actor = Depends(get_current_actor)
):
    """Balances and pending counts of every broker ledger"""
    items, total, page, limit = await BrokerLedgerService.summaries(page, limit)
    return Envelope(data=Page(items=items, total=total, page=page, limit=limit, pages=page_count(total, limit)))


@router.post(
    "/{broker_id}/ledger/transactions",
    response_model=Envelope[BrokerLedgerResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_transaction(
    broker_id: str,
    tx_in: BrokerTransactionCreate,
    actor: Actor = Depends(get_current_actor)
):
    ledger = await BrokerLedgerService.add_transaction(broker_id, tx_in, actor.id)
    return Envelope(data=BrokerLedgerResponse.from_model(ledger))


@router.get("/{broker_id}/ledger", response_model=Envelope[BrokerLedgerResponse])
async def get_ledger(
    broker_id: str,
    branch_id: Optional[str] = None,
    actor: Actor = Depends(get_current_actor)
):
    ledger = await BrokerLedgerService.get_ledger(broker_id, branch_id)
    return Envelope(data=BrokerLedgerResponse.from_model(ledger))


@router.post("/{broker_id}/ledger/transactions/{transaction_id}/approve", response_model=Envelope[BrokerLedgerResponse])
async def approve_transaction(
    broker_id: str,
    transaction_id: str,
    request: ApproveRequest,
    branch_id: Optional[str] = None,
    actor: Actor = Depends(get_current_actor)
):
    ledger = await BrokerLedgerService.decide(
        broker_id, transaction_id, ApprovalStatus.APPROVED, actor.id,
        branch_id=branch_id, remark=request.remark,
    )
    return Envelope(data=BrokerLedgerResponse.from_model(ledger))


@router.post("/{broker_id}/ledger/transactions/{transaction_id}/reject", response_model=Envelope[BrokerLedgerResponse])
async def reject_transaction(
    broker_id: str,
    transaction_id: str,
    request: RejectRequest,
    branch_id: Optional[str] = None,
    actor: Actor = Depends(get_current_actor)
):
    ledger = await BrokerLedgerService.decide(
        broker_id, transaction_id, ApprovalStatus.REJECTED, actor.id,
        branch_id=branch_id, remark=request.remark, rejection_reason=request.reason,
    )
    return Envelope(data=BrokerLedgerResponse.from_model(ledger))


@router.get("/{broker_id}/ledger/statement", response_model=Envelope[BrokerStatement])
async def get_statement(
    broker_id: str,
    branch_id: Optional[str] = None,
    from_date: Optional[datetime] = Query(default=None, alias="from"),
    to_date: Optional[datetime] = Query(default=None, alias="to"),
    actor: Actor = Depends(get_current_actor)
):
    statement = await BrokerLedgerService.statement(broker_id, branch_id, from_date, to_date)
    return Envelope(data=statement)
