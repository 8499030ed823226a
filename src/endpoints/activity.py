# src/endpoints/activity.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.postgres import get_db
from src.schemas.activity import ActivityFeedResponse, ActivityResponse
from src.services.activity_service import GLOBAL_FEED_DEFAULT_LIMIT, GLOBAL_FEED_MAX_LIMIT, activity_service

activity_router = APIRouter(
    prefix="/activity",
    tags=["activity"],
)


@activity_router.get("", response_model=ActivityFeedResponse)
async def global_activity(
        limit: int = Query(default=GLOBAL_FEED_DEFAULT_LIMIT, ge=1, le=GLOBAL_FEED_MAX_LIMIT),
        db: AsyncSession = Depends(get_db)
):
    """Общая лента активности платформы"""
    items = await activity_service.global_feed(db, limit)
    return ActivityFeedResponse(activities=[ActivityResponse.model_validate(i) for i in items])
