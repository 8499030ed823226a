# src/security/auth.py
"""
Проверка JWT сессии. Сам вход (OAuth-провайдеры, cookies) живёт во внешнем
слое идентификации; здесь декодирование токена, загрузка пользователя
и подписанный state для onboarding-а выплат.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.core.exceptions import Unauthorized
from src.database import models
from src.database.postgres import get_db
from src.repository.user_repository import user_repository

logger = logging.getLogger(__name__)

ONBOARDING_STATE_EXPIRE_MINUTES = 30
ONBOARDING_STATE_PURPOSE = "payments_onboarding"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token", auto_error=False)


def create_onboarding_state(project_id: str, owner_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Подписанный state для onboarding-а выплат: проект, его владелец и срок действия"""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ONBOARDING_STATE_EXPIRE_MINUTES))
    return jwt.encode(
        {
            "sub": str(owner_id),
            "project_id": str(project_id),
            "purpose": ONBOARDING_STATE_PURPOSE,
            "exp": expire,
        },
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_onboarding_state(state: str) -> Tuple[str, str]:
    """(project_id, owner_id) из state; Unauthorized при подделке или истечении срока"""
    try:
        payload = jwt.decode(
            state,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError as e:
        logger.info(f"Rejected onboarding state: {e}")
        raise Unauthorized()

    project_id = payload.get("project_id")
    owner_id = payload.get("sub")
    if payload.get("purpose") != ONBOARDING_STATE_PURPOSE or not project_id or not owner_id:
        raise Unauthorized()
    return str(project_id), str(owner_id)


def decode_user_id(token: str) -> str:
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError as e:
        logger.info(f"Rejected session token: {e}")
        raise Unauthorized()

    user_id = payload.get("sub")
    if not user_id or payload.get("purpose"):
        raise Unauthorized()
    return str(user_id)


async def get_current_user(
        token: str = Depends(oauth2_scheme),
        db: AsyncSession = Depends(get_db)
) -> models.User:
    """Текущий пользователь; 401 без валидной сессии"""
    user = await user_repository.get_user_by_id(db, decode_user_id(token))
    if user is None:
        raise Unauthorized()
    return user


async def get_optional_user(
        token: Optional[str] = Depends(optional_oauth2_scheme),
        db: AsyncSession = Depends(get_db)
) -> Optional[models.User]:
    """Пользователь, если сессия есть (checkout доступен и анонимно)"""
    if not token:
        return None
    return await get_current_user(token, db)


def is_host(user: Optional[models.User]) -> bool:
    return bool(user and user.email and user.email.lower() in settings.HOST_EMAIL_LIST)
