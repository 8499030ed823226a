# src/database/models/models_content.py
import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index

from .base import Base, new_id, utcnow


class ProjectStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    FROZEN = "frozen"
    DELETED = "deleted"


class ActivityType(str, enum.Enum):
    DONATION = "donation"
    PROJECT_CREATED = "project_created"
    PROJECT_UPDATED = "project_updated"
    MILESTONE_REACHED = "milestone_reached"


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(36), ForeignKey("users.id"), index=True)
    name = Column(String, nullable=False)
    status = Column(String(16), default=ProjectStatus.DRAFT.value, nullable=False)
    external_account_id = Column(String, nullable=True)  # connected account у провайдера
    monthly_target = Column(Integer, nullable=True)
    owner_want_monthly = Column(Integer, nullable=True)
    currency = Column(String(3), default="jpy", nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def accepts_donations(self) -> bool:
        return self.status == ProjectStatus.ACTIVE.value and bool(self.external_account_id)


class ActivityItem(Base):
    """Лента событий. Имя проекта хранится снимком на момент записи"""
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(32), nullable=False)
    project_id = Column(String(36), nullable=False)
    project_name = Column(String, nullable=False)
    actor_name = Column(String, nullable=True)
    amount = Column(Integer, nullable=True)
    milestone = Column(String(32), nullable=True)  # min_monthly | target_monthly
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_activities_project_created", "project_id", "created_at"),
    )
