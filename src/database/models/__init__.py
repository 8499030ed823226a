# src/database/models/__init__.py
from .base import Base

# Экспортируем все модели для Alembic
__all__ = [
    'Base',
    'User',
    'Project', 'ProjectStatus', 'ActivityItem', 'ActivityType',
    'Donation', 'DonationStatus', 'DonorType', 'ProcessedEvent', 'TokenMigration',
]

from .models_auth import User
from .models_content import Project, ProjectStatus, ActivityItem, ActivityType
from .models_payment import Donation, DonationStatus, DonorType, ProcessedEvent, TokenMigration
