# src/database/models/base.py
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

# Базовый класс для моделей
Base = declarative_base()


def utcnow() -> datetime:
    """Текущее время в UTC без tzinfo (так хранится во всех таблицах)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())
