# src/database/postgres.py
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from src.config.settings import settings
from src.database.models.base import Base

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

# asyncpg ограничивает время каждого запроса
connect_args = {}
if DATABASE_URL.startswith("postgresql+asyncpg"):
    connect_args["command_timeout"] = settings.DB_STATEMENT_TIMEOUT

# Асинхронный engine
engine = create_async_engine(
    DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_size=20,
    max_overflow=10,
    pool_timeout=30,
    pool_recycle=1800,
    pool_pre_ping=True,
    connect_args=connect_args,
)

# Фабрика сессий
AsyncSessionFactory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncSession:
    """
    Dependency для получения асинхронной сессии БД.
    Незакоммиченная транзакция откатывается при выходе (в т.ч. при отмене запроса).
    """
    async with AsyncSessionFactory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_tables():
    """
    Создание всех таблиц (для разработки)
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
