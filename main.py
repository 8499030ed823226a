# main.py
import asyncio
import time
import logging
from contextlib import asynccontextmanager
from typing import cast, Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette import status
from starlette.responses import JSONResponse

from logging_config import setup_logging
from src.config.settings import settings
from src.core.handlers import register_exception_handlers
from src.database.postgres import create_tables, engine
from src.endpoints.activity import activity_router
from src.endpoints.donations import me_router
from src.endpoints.payments import connect_router, payments_router
from src.endpoints.projects import projects_router

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting GIVErS API (environment={settings.ENVIRONMENT})")

    # Создание таблиц (только для разработки, в остальных окружениях - alembic)
    if settings.ENVIRONMENT == "development":
        await create_tables()

    if not settings.PAYMENTS_ENABLED:
        logger.warning("PAYMENTS_SECRET_KEY is not set: donation endpoints will return 503")

    yield

    await engine.dispose()
    logger.info("Database connections closed")


app = FastAPI(
    title="GIVErS API",
    description="Донаты проектам: разовые и ежемесячные платежи через платёжного провайдера",
    version="1.0.0",
    lifespan=lifespan,
    redoc_url=None,
)

app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=[settings.FRONTEND_URL] if settings.ENVIRONMENT == "production" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Authorization", "Content-Type"],
)


# Общий лимит времени на запрос
@app.middleware("http")
async def request_timeout(request: Request, call_next):
    try:
        return await asyncio.wait_for(call_next(request), timeout=settings.REQUEST_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning(f"Request timed out: {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "request_timeout"}
        )


# Middleware для логирования медленных запросов
@app.middleware("http")
async def log_slow_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    # Логируем только медленные запросы (> 1 сек)
    if process_time > 1.0:
        logger.warning(
            f"Slow request: {request.method} {request.url.path} "
            f"- {process_time:.3f}s"
        )

    return response


register_exception_handlers(app)


@app.get("/health", tags=["System"])
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "payments_enabled": settings.PAYMENTS_ENABLED,
    }


app.include_router(payments_router)
app.include_router(connect_router)
app.include_router(me_router)
app.include_router(projects_router)
app.include_router(activity_router)
