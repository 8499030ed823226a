# src/config/settings.py
import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

    # PostgreSQL
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "password")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "givers")
    DB_ECHO = os.getenv("DB_ECHO", "False").lower() == "true"
    DB_STATEMENT_TIMEOUT = int(os.getenv("DB_STATEMENT_TIMEOUT", "10"))

    # JWT сессии (выдаётся внешним слоем идентификации)
    SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key")
    ALGORITHM = os.getenv("ALGORITHM", "HS256")

    # Хосты платформы (администраторы)
    HOST_EMAILS = os.getenv("HOST_EMAILS", "")

    # Платёжный провайдер
    PAYMENTS_SECRET_KEY = os.getenv("PAYMENTS_SECRET_KEY", "")
    PAYMENTS_WEBHOOK_SECRET = os.getenv("PAYMENTS_WEBHOOK_SECRET", "")
    PAYMENTS_CONNECT_CLIENT_ID = os.getenv("PAYMENTS_CONNECT_CLIENT_ID", "")
    PAYMENTS_CONNECT_REDIRECT_URL = os.getenv("PAYMENTS_CONNECT_REDIRECT_URL", "")
    PAYMENTS_PLATFORM_FEE_PERCENT = int(os.getenv("PAYMENTS_PLATFORM_FEE_PERCENT", "0"))
    PAYMENTS_TIMEOUT = float(os.getenv("PAYMENTS_TIMEOUT", "30"))

    # Frontend
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:4321")

    # Общий лимит времени на запрос (секунды)
    REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60"))

    @property
    def DATABASE_URL(self) -> str:
        """Асинхронный URL для FastAPI с asyncpg"""
        url = os.getenv("DATABASE_URL")
        if not url:
            return (
                f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@"
                f"{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    @property
    def PAYMENTS_ENABLED(self) -> bool:
        return bool(self.PAYMENTS_SECRET_KEY)

    @property
    def HOST_EMAIL_LIST(self) -> list[str]:
        return [e.strip().lower() for e in self.HOST_EMAILS.split(",") if e.strip()]


settings = Settings()
