# src/services/project_service.py
import logging
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.core.exceptions import (
    Conflict, Forbidden, GiversException, ProjectNotFound, Unauthorized, ValidationFailed
)
from src.database.models import Project
from src.repository.donations_repository import DonationMessage, donations_repository
from src.repository.projects_repository import projects_repository
from src.schemas.project import ChartPoint
from src.security.auth import create_onboarding_state, decode_onboarding_state
from src.services.payments_gateway import PaymentsGateway

logger = logging.getLogger(__name__)

MESSAGES_MAX_LIMIT = 100


class ProjectService:
    """Чтение данных проекта для владельца и публичных страниц, подключение выплат"""

    @staticmethod
    async def get_project(db: AsyncSession, project_id: str) -> Project:
        project = await projects_repository.get_active(db, project_id)
        if project is None:
            raise ProjectNotFound()
        return project

    @classmethod
    async def get_chart(cls, db: AsyncSession, project_id: str) -> List[ChartPoint]:
        """Одна точка на каждый месяц, в котором были донаты"""
        project = await cls.get_project(db, project_id)
        sums = await donations_repository.monthly_sum_by_project(db, project.id)
        return [
            ChartPoint(
                month=item.month,
                min_amount=project.owner_want_monthly or 0,
                target_amount=project.monthly_target or 0,
                actual_amount=item.amount,
            )
            for item in sums
        ]

    @staticmethod
    async def get_messages(
            db: AsyncSession,
            project: Project,
            limit: int = 20,
            offset: int = 0,
            sort: str = "desc",
            donor: Optional[str] = None
    ) -> Tuple[List[DonationMessage], int]:
        if sort not in ("asc", "desc"):
            raise ValidationFailed("invalid_sort")
        limit = min(max(limit, 1), MESSAGES_MAX_LIMIT)
        donor = (donor or "").strip() or None
        return await donations_repository.list_messages_by_project(
            db, project.id, limit=limit, offset=max(offset, 0), sort=sort, donor_filter=donor
        )

    # ---------- Connected account ----------

    @staticmethod
    def onboarding_url(gateway: PaymentsGateway, project: Project) -> str:
        return gateway.onboarding_link(create_onboarding_state(project.id, project.owner_id))

    @classmethod
    async def complete_onboarding(
            cls,
            db: AsyncSession,
            gateway: PaymentsGateway,
            code: Optional[str],
            state: Optional[str]
    ) -> str:
        """
        Обработка возврата с onboarding-а провайдера. Возвращает URL фронтенда:
        ?stripe_connected=1 при успехе, ?stripe_error=1 при ошибке.
        state подписан при выдаче ссылки владельцу; уже подключённый аккаунт не заменяется.
        """
        frontend = settings.FRONTEND_URL.rstrip("/")
        try:
            project_id, owner_id = decode_onboarding_state(state or "")
        except Unauthorized:
            logger.warning("Payments onboarding callback rejected: invalid state")
            return f"{frontend}/?stripe_error=1"

        project_url = f"{frontend}/projects/{project_id}"
        if not code:
            return f"{project_url}?stripe_error=1"

        try:
            project = await cls.get_project(db, project_id)
            if project.owner_id != owner_id:
                raise Forbidden()
            if project.external_account_id:
                raise Conflict("account_already_connected")
            account_id = await gateway.exchange_account(code)
            await projects_repository.attach_external_account(db, project, account_id)
            await db.commit()
        except GiversException as e:
            await db.rollback()
            logger.warning(f"Payments onboarding failed for project {project_id}: {e.code}")
            return f"{project_url}?stripe_error=1"

        return f"{project_url}?stripe_connected=1"


project_service = ProjectService()
