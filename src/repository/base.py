# src/repository/base.py
from typing import List, Optional, Any, TypeVar, Generic

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

ModelType = TypeVar("ModelType")


class BaseRepository(Generic[ModelType]):
    """
    Общие запросы поверх одной модели.
    Репозитории не коммитят: границы транзакции задаёт сервис.
    """

    def __init__(self, model):
        self.model = model

    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        stmt = select(self.model).where(self.model.id == id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, db: AsyncSession, **data) -> ModelType:
        db_obj = self.model(**data)
        db.add(db_obj)
        await db.flush()
        await db.refresh(db_obj)
        return db_obj

    async def get_by_field(
            self,
            db: AsyncSession,
            field_name: str,
            field_value: Any,
            order_by: Optional[Any] = None,
            skip: int = 0,
            limit: int = 100,
            **additional_filters
    ) -> List[ModelType]:
        """Универсальный метод для получения по полю с фильтрацией и сортировкой"""
        stmt = select(self.model).where(getattr(self.model, field_name) == field_value)

        # Дополнительные фильтры
        for filter_field, filter_value in additional_filters.items():
            if filter_value is not None:
                stmt = stmt.where(getattr(self.model, filter_field) == filter_value)

        if order_by is not None:
            stmt = stmt.order_by(*order_by) if isinstance(order_by, (list, tuple)) else stmt.order_by(order_by)

        stmt = stmt.offset(skip).limit(limit)
        result = await db.execute(stmt)
        return list(result.scalars().all())
