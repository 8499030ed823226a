# src/endpoints/donations.py
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import models
from src.database.postgres import get_db
from src.dependencies.services import get_donation_service
from src.schemas.payment import (
    DonationListResponse, DonationPatch, DonationResponse, OkResponse, TokenMigrationResponse
)
from src.security.auth import get_current_user
from src.services.donation_service import DonationService

me_router = APIRouter(
    prefix="/me",
    tags=["donations"],
)


@me_router.get("/donations", response_model=DonationListResponse)
async def my_donations(
        limit: int = Query(default=50, ge=1, le=50),
        offset: int = Query(default=0, ge=0),
        current_user: models.User = Depends(get_current_user),
        service: DonationService = Depends(get_donation_service),
        db: AsyncSession = Depends(get_db)
):
    """Донаты текущего пользователя, новые первыми"""
    donations = await service.list_user_donations(db, current_user.id, limit=limit, offset=offset)
    return DonationListResponse(donations=[DonationResponse.model_validate(d) for d in donations])


@me_router.patch("/donations/{donation_id}", response_model=OkResponse)
async def update_my_donation(
        donation_id: str,
        patch: DonationPatch,
        current_user: models.User = Depends(get_current_user),
        service: DonationService = Depends(get_donation_service),
        db: AsyncSession = Depends(get_db)
):
    await service.update_donation(
        db, donation_id, current_user.id, amount=patch.amount, paused=patch.paused
    )
    return OkResponse()


@me_router.delete("/donations/{donation_id}", response_model=OkResponse)
async def delete_my_donation(
        donation_id: str,
        current_user: models.User = Depends(get_current_user),
        service: DonationService = Depends(get_donation_service),
        db: AsyncSession = Depends(get_db)
):
    """Мягкое удаление; подписка при этом отменяется у провайдера"""
    await service.delete_donation(db, donation_id, current_user.id)
    return OkResponse()


@me_router.post("/migrate-from-token", response_model=TokenMigrationResponse)
async def migrate_from_token(
        donor_token: Optional[str] = Cookie(default=None),
        current_user: models.User = Depends(get_current_user),
        service: DonationService = Depends(get_donation_service),
        db: AsyncSession = Depends(get_db)
):
    """Перенос анонимных донатов (cookie donor_token) на вошедшего пользователя"""
    result = await service.migrate_token(db, donor_token, current_user.id)
    return TokenMigrationResponse(
        migrated_count=result.migrated,
        already_migrated=result.already_migrated
    )
