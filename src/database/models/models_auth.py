# src/database/models/models_auth.py
from sqlalchemy import Column, String, DateTime

from .base import Base, new_id, utcnow


class User(Base):
    """Пользователь. Таблица принадлежит слою идентификации, ядро только читает имя и email"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
