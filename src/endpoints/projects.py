# src/endpoints/projects.py
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import models
from src.database.postgres import get_db
from src.dependencies.rbac import project_owner_or_host
from src.schemas.activity import ActivityFeedResponse, ActivityResponse
from src.schemas.project import ChartResponse, MessageResponse, MessagesResponse
from src.services.activity_service import PROJECT_FEED_MAX_LIMIT, activity_service
from src.services.project_service import project_service

projects_router = APIRouter(
    prefix="/projects",
    tags=["projects"],
    responses={404: {"description": "Not found"}}
)


@projects_router.get("/{project_id}/messages", response_model=MessagesResponse)
async def project_messages(
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
        sort: Literal["asc", "desc"] = Query(default="desc"),
        donor: Optional[str] = Query(default=None, max_length=100),
        project: models.Project = Depends(project_owner_or_host),
        db: AsyncSession = Depends(get_db)
):
    """Сообщения доноров: для владельца проекта и хостов"""
    messages, total = await project_service.get_messages(
        db, project, limit=limit, offset=offset, sort=sort, donor=donor
    )
    return MessagesResponse(
        messages=[MessageResponse.model_validate(m) for m in messages],
        total=total
    )


@projects_router.get("/{project_id}/chart", response_model=ChartResponse)
async def project_chart(
        project_id: str,
        db: AsyncSession = Depends(get_db)
):
    """Помесячные суммы донатов против минимальной и целевой суммы"""
    return ChartResponse(chart=await project_service.get_chart(db, project_id))


@projects_router.get("/{project_id}/activity", response_model=ActivityFeedResponse)
async def project_activity(
        project_id: str,
        limit: int = Query(default=10, ge=1, le=PROJECT_FEED_MAX_LIMIT),
        db: AsyncSession = Depends(get_db)
):
    await project_service.get_project(db, project_id)
    items = await activity_service.project_feed(db, project_id, limit)
    return ActivityFeedResponse(activities=[ActivityResponse.model_validate(i) for i in items])
