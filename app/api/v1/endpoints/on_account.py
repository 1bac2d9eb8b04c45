from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status

from app.core.auth import Actor, get_current_actor
from app.models.receipt import PayerType, ReceiptStatus
from app.schemas.common import Envelope, Page
from app.schemas.receipt import (
    AllocateRequest,
    PayerSummary,
    ReceiptCreate,
    ReceiptFilters,
    ReceiptResponse,
)
from app.services.allocation_service import AllocationService
from app.services.receipt_service import ReceiptService, page_count

router = APIRouter()


@router.post("/receipts", response_model=Envelope[ReceiptResponse], status_code=status.HTTP_201_CREATED)
async def create_receipt(
    receipt_in: ReceiptCreate,
    actor: Actor = Depends(get_current_actor)
):
    """Record an on-account receipt from a subdealer or broker"""
    receipt = await ReceiptService.create(receipt_in, actor.id)
    return Envelope(data=ReceiptResponse.from_model(receipt))


@router.get("/receipts", response_model=Envelope[Page[ReceiptResponse]])
async def list_receipts(
    payer_type: Optional[PayerType] = None,
    payer_id: Optional[str] = None,
    receipt_status: Optional[ReceiptStatus] = Query(default=None, alias="status"),
    q: Optional[str] = None,
    received_from: Optional[datetime] = Query(default=None, alias="from"),
    received_to: Optional[datetime] = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    actor: Actor = Depends(get_current_actor)
):
    """List receipts, newest received first"""
    filters = ReceiptFilters(
        payer_type=payer_type,
        payer_id=payer_id,
        status=receipt_status,
        q=q,
        received_from=received_from,
        received_to=received_to,
    )
    items, total, page, limit = await ReceiptService.list_receipts(filters, page, limit)
    return Envelope(data=Page(
        items=[ReceiptResponse.from_model(r) for r in items],
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    ))


@router.get("/receipts/{receipt_id}", response_model=Envelope[ReceiptResponse])
async def get_receipt(
    receipt_id: str,
    actor: Actor = Depends(get_current_actor)
):
    receipt = await ReceiptService.get(receipt_id)
    return Envelope(data=ReceiptResponse.from_model(receipt))


@router.post("/receipts/{receipt_id}/allocate", response_model=Envelope[ReceiptResponse])
async def allocate_receipt(
    receipt_id: str,
    request: AllocateRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    actor: Actor = Depends(get_current_actor)
):
    """Allocate receipt balance to one or more bookings, all or nothing"""
    receipt = await AllocationService.allocate(receipt_id, request.allocations, actor.id, idempotency_key)
    return Envelope(data=ReceiptResponse.from_model(receipt))


@router.delete("/receipts/{receipt_id}/allocations/{allocation_id}", response_model=Envelope[ReceiptResponse])
async def deallocate_receipt(
    receipt_id: str,
    allocation_id: str,
    actor: Actor = Depends(get_current_actor)
):
    """Reverse one allocation and return its amount to the receipt"""
    receipt = await AllocationService.deallocate(receipt_id, allocation_id, actor.id)
    return Envelope(data=ReceiptResponse.from_model(receipt))


@router.get("/payers/{payer_type}/{payer_id}/summary", response_model=Envelope[PayerSummary])
async def payer_summary(
    payer_type: PayerType,
    payer_id: str,
    actor: Actor = Depends(get_current_actor)
):
    summary = await ReceiptService.payer_summary(payer_type.value, payer_id)
    return Envelope(data=summary)
