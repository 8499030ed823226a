# src/services/activity_service.py
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import ActivityItem, ActivityType, Project
from src.repository.activity_repository import activity_repository

logger = logging.getLogger(__name__)

GLOBAL_FEED_DEFAULT_LIMIT = 10
GLOBAL_FEED_MAX_LIMIT = 50
PROJECT_FEED_MAX_LIMIT = 20


def clamp_limit(limit: Optional[int], maximum: int, default: int = GLOBAL_FEED_DEFAULT_LIMIT) -> int:
    if not limit or limit < 1:
        return default
    return min(limit, maximum)


class ActivityService:
    """Лента активности. Запись best-effort: ошибка не ломает родительскую операцию"""

    async def record(
            self,
            db: AsyncSession,
            type: ActivityType,
            project: Project,
            actor_name: Optional[str] = None,
            amount: Optional[int] = None,
            milestone: Optional[str] = None
    ) -> Optional[ActivityItem]:
        try:
            async with db.begin_nested():
                return await activity_repository.create(
                    db,
                    type=type.value,
                    project_id=project.id,
                    project_name=project.name,
                    actor_name=actor_name,
                    amount=amount,
                    milestone=milestone,
                )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to record {type.value} activity for project {project.id}: {e}")
            return None

    async def milestone_recorded(self, db: AsyncSession, project_id: str, milestone: str, since: datetime) -> bool:
        return await activity_repository.milestone_exists(db, project_id, milestone, since)

    async def global_feed(self, db: AsyncSession, limit: Optional[int] = None) -> List[ActivityItem]:
        return await activity_repository.list_global(db, clamp_limit(limit, GLOBAL_FEED_MAX_LIMIT))

    async def project_feed(self, db: AsyncSession, project_id: str, limit: Optional[int] = None) -> List[ActivityItem]:
        return await activity_repository.list_by_project(db, project_id, clamp_limit(limit, PROJECT_FEED_MAX_LIMIT))


activity_service = ActivityService()
