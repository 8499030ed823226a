# src/database/models/models_payment.py
import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, ForeignKey, UniqueConstraint, Index
)

from .base import Base, new_id, utcnow


class DonorType(str, enum.Enum):
    USER = "user"
    TOKEN = "token"


class DonationStatus(str, enum.Enum):
    COMPLETED = "completed"  # разовый платёж
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class Donation(Base):
    """Разовый или ежемесячный донат. Для подписки external_payment_id = ссылка на подписку"""
    __tablename__ = "donations"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    donor_type = Column(String(8), nullable=False)
    donor_id = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    is_recurring = Column(Boolean, default=False, nullable=False)
    message = Column(Text, nullable=True)
    paused = Column(Boolean, default=False, nullable=False)
    external_payment_id = Column(String, nullable=False)
    status = Column(String(16), default=DonationStatus.COMPLETED.value, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "external_payment_id", name="uq_donations_project_payment"),
        Index("ix_donations_donor", "donor_type", "donor_id"),
        Index("ix_donations_project_created", "project_id", "created_at"),
    )


class ProcessedEvent(Base):
    """Журнал применённых webhook-событий провайдера"""
    __tablename__ = "processed_events"

    event_id = Column(String, primary_key=True)
    event_type = Column(String(64), nullable=True)
    processed_at = Column(DateTime, default=utcnow, nullable=False)


class TokenMigration(Base):
    """Аудит переноса анонимных донатов на пользователя. Токен хранится только хешем"""
    __tablename__ = "token_migrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_hash = Column(String(64), nullable=False)
    user_id = Column(String(36), nullable=False)
    migrated_count = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_token_migrations_token_user", "token_hash", "user_id"),
    )
