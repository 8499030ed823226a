from src.repository.activity_repository import activity_repository
from src.repository.donations_repository import donations_repository
from src.repository.projects_repository import projects_repository
from src.repository.user_repository import user_repository

__all__ = [
    "activity_repository",
    "donations_repository",
    "projects_repository",
    "user_repository",
]
