# src/repository/user_repository.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional

from src.database import models


class UserRepository:

    async def get_user_by_id(self, db: AsyncSession, user_id: str) -> Optional[models.User]:
        """Получение пользователя по ID"""
        result = await db.execute(
            select(models.User).where(models.User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_display_name(self, db: AsyncSession, user_id: str) -> Optional[str]:
        """Отображаемое имя пользователя (для ленты и сообщений)"""
        result = await db.execute(
            select(models.User.name).where(models.User.id == user_id)
        )
        return result.scalar_one_or_none()


user_repository = UserRepository()
