from typing import List

from fastapi import APIRouter, Depends, status

from app.core.auth import Actor, get_current_actor
from app.schemas.common import Envelope
from app.schemas.disbursement import (
    AuthorityConfigure,
    AuthorityResponse,
    DeviationCreate,
    DeviationResponse,
)
from app.services.deviation_service import DeviationService

router = APIRouter()


@router.post("/", response_model=Envelope[DeviationResponse], status_code=status.HTTP_201_CREATED)
async def add_manager_deviation(
    deviation_in: DeviationCreate,
    actor: Actor = Depends(get_current_actor)
):
    """Apply a manager deviation to a booking within the manager's limits"""
    deviation = await DeviationService.add_manager_deviation(deviation_in, actor.id)
    return Envelope(data=DeviationResponse.from_model(deviation))


@router.get("/booking/{booking_id}", response_model=Envelope[List[DeviationResponse]])
async def list_booking_deviations(
    booking_id: str,
    actor: Actor = Depends(get_current_actor)
):
    deviations = await DeviationService.list_for_booking(booking_id)
    return Envelope(data=[DeviationResponse.from_model(d) for d in deviations])


@router.put("/authorities/{manager_id}", response_model=Envelope[AuthorityResponse])
async def configure_authority(
    manager_id: str,
    config: AuthorityConfigure,
    actor: Actor = Depends(get_current_actor)
):
    """Set a manager's limits and start a new deviation period"""
    authority = await DeviationService.configure_authority(manager_id, config, actor.id)
    return Envelope(data=AuthorityResponse.from_model(authority))


@router.get("/authorities/{manager_id}", response_model=Envelope[AuthorityResponse])
async def get_authority(
    manager_id: str,
    actor: Actor = Depends(get_current_actor)
):
    authority = await DeviationService.get_authority(manager_id)
    return Envelope(data=AuthorityResponse.from_model(authority))
