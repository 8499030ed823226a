# tests/conftest.py
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from src.database.models import Base, Project, ProjectStatus, User
from src.database.postgres import get_db
from src.dependencies.services import get_payments_gateway
from src.security.auth import get_current_user, get_optional_user
from src.services.payments_gateway import PaymentsGateway
from tests.helpers import CHECKOUT_URL, WEBHOOK_SECRET

# Асинхронная тестовая БД (SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False
)


# pysqlite сам управляет BEGIN и ломает SAVEPOINT: отключаем и открываем транзакцию явно
@event.listens_for(engine.sync_engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingAsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
async def ensure_tables_created():
    """Единственная фикстура для управления таблицами"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Фикстура для сессии БД"""
    async with TestingAsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@pytest.fixture
def stripe_client():
    """Мок клиента провайдера: только те методы, которые вызывает шлюз"""
    client = MagicMock()
    client.checkout.sessions.create_async = AsyncMock(return_value=MagicMock(url=CHECKOUT_URL))
    client.subscriptions.update_async = AsyncMock(return_value=MagicMock(id="sub_9"))
    client.subscriptions.cancel_async = AsyncMock(return_value=MagicMock(id="sub_9", status="canceled"))
    client.oauth.authorize_url = MagicMock(return_value="https://connect.example/oauth/authorize?state=p1")
    client.oauth.token = MagicMock(return_value={"stripe_user_id": "acct_new"})
    return client


@pytest.fixture
def gateway(stripe_client) -> PaymentsGateway:
    return PaymentsGateway(
        secret_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        connect_client_id="ca_test_123",
        client=stripe_client,
        sleep=AsyncMock(),
    )


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    user = User(id="u1", email="donor@example.com", name="Taro Donor")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    user = User(id="u2", email="other@example.com", name="Hanako Other")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def owner_user(db_session: AsyncSession) -> User:
    user = User(id="owner", email="owner@example.com", name="Project Owner")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def test_project(db_session: AsyncSession, owner_user: User) -> Project:
    """Активный проект с подключённым аккаунтом и месячными целями"""
    project = Project(
        id="p1",
        owner_id=owner_user.id,
        name="Open Source Tool",
        status=ProjectStatus.ACTIVE.value,
        external_account_id="acct_1",
        owner_want_monthly=3000,
        monthly_target=10_000,
        currency="jpy",
    )
    db_session.add(project)
    await db_session.commit()
    return project


@pytest.fixture
async def client(db_session: AsyncSession, gateway: PaymentsGateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP клиент приложения на тестовой БД и мок-шлюзе (анонимный по умолчанию)"""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_optional_user():
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payments_gateway] = lambda: gateway
    app.dependency_overrides[get_optional_user] = override_get_optional_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    # Очищаем переопределения
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Подмена текущего пользователя: login(user) или login(None) для анонима"""

    def _login(user: Optional[User]):
        async def override_get_current_user():
            return user

        async def override_get_optional_user():
            return user

        if user is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = override_get_current_user
        app.dependency_overrides[get_optional_user] = override_get_optional_user

    return _login
