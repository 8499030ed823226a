# src/core/handlers.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette import status
from starlette.responses import JSONResponse

from src.core.exceptions import GiversException, WebhookSignatureError

logger = logging.getLogger(__name__)


async def givers_exception_handler(request: Request, exc: GiversException):
    """Перевод доменных исключений в JSON {error: <code>}"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    elif isinstance(exc, WebhookSignatureError):
        logger.warning(f"Webhook signature rejected: {type(exc).__name__}")
    else:
        logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.code}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Обработчик ошибок валидации запросов"""
    logger.warning(f"Request validation error: {exc.errors()}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_failed",
            "errors": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                for err in exc.errors()
            ],
        }
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Глобальный обработчик исключений"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error"}
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GiversException, givers_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
