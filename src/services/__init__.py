# src/services/__init__.py
from .activity_service import activity_service
from .project_service import project_service

__all__ = [
    'activity_service',
    'project_service',
]
