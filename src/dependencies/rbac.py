# src/dependencies/rbac.py
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import Forbidden, ProjectNotFound
from src.database import models
from src.database.postgres import get_db
from src.repository.projects_repository import projects_repository
from src.security.auth import get_current_user, is_host


async def project_owner_or_host(
        project_id: str,
        current_user: models.User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
) -> models.Project:
    """Проект, к которому у пользователя есть доступ владельца или хоста"""
    project = await projects_repository.get(db, project_id)
    if project is None:
        raise ProjectNotFound()
    if project.owner_id != current_user.id and not is_host(current_user):
        raise Forbidden()
    return project


async def project_owner(
        project_id: str,
        current_user: models.User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
) -> models.Project:
    project = await projects_repository.get(db, project_id)
    if project is None:
        raise ProjectNotFound()
    if project.owner_id != current_user.id:
        raise Forbidden()
    return project
