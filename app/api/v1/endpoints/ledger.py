from typing import List

from fastapi import APIRouter, Depends, status

from app.core.auth import Actor, get_current_actor
from app.models.approval import ApprovalStatus
from app.schemas.common import Envelope
from app.schemas.ledger import (
    ApproveRequest,
    BookingLedgerSummary,
    LedgerEntryCreate,
    LedgerEntryResponse,
    LedgerEntryUpdate,
    RejectRequest,
)
from app.services.ledger_service import LedgerService

router = APIRouter()


@router.post("/entries", response_model=Envelope[LedgerEntryResponse], status_code=status.HTTP_201_CREATED)
async def create_entry(
    entry_in: LedgerEntryCreate,
    actor: Actor = Depends(get_current_actor)
):
    """Post a payment or debit charge against a booking"""
    entry = await LedgerService.create_entry(entry_in, actor.id)
    return Envelope(data=LedgerEntryResponse.from_model(entry))


@router.get("/entries/{entry_id}", response_model=Envelope[LedgerEntryResponse])
async def get_entry(
    entry_id: str,
    actor: Actor = Depends(get_current_actor)
):
    entry = await LedgerService.get_entry(entry_id)
    return Envelope(data=LedgerEntryResponse.from_model(entry))


@router.patch("/entries/{entry_id}", response_model=Envelope[LedgerEntryResponse])
async def update_entry(
    entry_id: str,
    patch: LedgerEntryUpdate,
    actor: Actor = Depends(get_current_actor)
):
    """Edit a pending amount or any entry's metadata"""
    entry = await LedgerService.update_entry(entry_id, patch, actor.id)
    return Envelope(data=LedgerEntryResponse.from_model(entry))


@router.post("/entries/{entry_id}/approve", response_model=Envelope[LedgerEntryResponse])
async def approve_entry(
    entry_id: str,
    request: ApproveRequest,
    actor: Actor = Depends(get_current_actor)
):
    entry = await LedgerService.set_approval_status(
        entry_id, ApprovalStatus.APPROVED, actor.id, remark=request.remark
    )
    return Envelope(data=LedgerEntryResponse.from_model(entry))


@router.post("/entries/{entry_id}/reject", response_model=Envelope[LedgerEntryResponse])
async def reject_entry(
    entry_id: str,
    request: RejectRequest,
    actor: Actor = Depends(get_current_actor)
):
    entry = await LedgerService.set_approval_status(
        entry_id, ApprovalStatus.REJECTED, actor.id,
        remark=request.remark, rejection_reason=request.reason,
    )
    return Envelope(data=LedgerEntryResponse.from_model(entry))


@router.get("/bookings/{booking_id}", response_model=Envelope[List[LedgerEntryResponse]])
async def list_booking_entries(
    booking_id: str,
    actor: Actor = Depends(get_current_actor)
):
    entries = await LedgerService.list_entries(booking_id)
    return Envelope(data=[LedgerEntryResponse.from_model(e) for e in entries])


@router.get("/bookings/{booking_id}/summary", response_model=Envelope[BookingLedgerSummary])
async def booking_summary(
    booking_id: str,
    actor: Actor = Depends(get_current_actor)
):
    """Credits by category, debits and balance of a booking"""
    summary = await LedgerService.booking_summary(booking_id)
    return Envelope(data=summary)
