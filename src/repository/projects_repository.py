# src/repository/projects_repository.py
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import Project, ProjectStatus
from src.database.models.base import utcnow
from src.repository.base import BaseRepository

logger = logging.getLogger(__name__)


class ProjectsRepository(BaseRepository[Project]):
    """Проекты принадлежат внешнему CRUD-слою; здесь только чтение и привязка аккаунта"""

    def __init__(self):
        super().__init__(Project)

    async def get_active(self, db: AsyncSession, project_id: str) -> Optional[Project]:
        project = await self.get(db, project_id)
        if project is None or project.status == ProjectStatus.DELETED.value:
            return None
        return project

    async def attach_external_account(self, db: AsyncSession, project: Project, account_id: str) -> Project:
        """Сохранение connected-аккаунта; черновик при этом становится активным"""
        project.external_account_id = account_id
        if project.status == ProjectStatus.DRAFT.value:
            project.status = ProjectStatus.ACTIVE.value
        project.updated_at = utcnow()
        await db.flush()
        logger.info(f"Project {project.id} connected to payments account, status={project.status}")
        return project


projects_repository = ProjectsRepository()
