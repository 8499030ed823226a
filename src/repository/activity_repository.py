# src/repository/activity_repository.py
from datetime import datetime
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import ActivityItem, ActivityType
from src.repository.base import BaseRepository


class ActivityRepository(BaseRepository[ActivityItem]):
    def __init__(self):
        super().__init__(ActivityItem)

    async def list_global(self, db: AsyncSession, limit: int = 10) -> List[ActivityItem]:
        """Общая лента, новые первыми"""
        stmt = select(ActivityItem).order_by(
            ActivityItem.created_at.desc(),
            ActivityItem.id.desc()
        ).limit(limit)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_project(self, db: AsyncSession, project_id: str, limit: int = 10) -> List[ActivityItem]:
        return await self.get_by_field(
            db,
            field_name="project_id",
            field_value=project_id,
            order_by=(ActivityItem.created_at.desc(), ActivityItem.id.desc()),
            limit=limit,
        )

    async def milestone_exists(
            self,
            db: AsyncSession,
            project_id: str,
            milestone: str,
            since: datetime
    ) -> bool:
        """Есть ли уже запись о достижении порога с момента since"""
        stmt = select(func.count()).select_from(ActivityItem).where(
            ActivityItem.project_id == project_id,
            ActivityItem.type == ActivityType.MILESTONE_REACHED.value,
            ActivityItem.milestone == milestone,
            ActivityItem.created_at >= since
        )
        return bool(await db.scalar(stmt))


activity_repository = ActivityRepository()
