# src/dependencies/services.py
from functools import lru_cache

from fastapi import Depends

from src.config.settings import settings
from src.core.exceptions import PaymentsDisabled
from src.services.donation_service import DonationService
from src.services.payments_gateway import PaymentsGateway


@lru_cache()
def get_payments_gateway() -> PaymentsGateway:
    """Один клиент провайдера на процесс"""
    return PaymentsGateway(
        secret_key=settings.PAYMENTS_SECRET_KEY,
        webhook_secret=settings.PAYMENTS_WEBHOOK_SECRET,
        connect_client_id=settings.PAYMENTS_CONNECT_CLIENT_ID,
        connect_redirect_url=settings.PAYMENTS_CONNECT_REDIRECT_URL,
        platform_fee_percent=settings.PAYMENTS_PLATFORM_FEE_PERCENT,
        timeout=settings.PAYMENTS_TIMEOUT,
    )


def require_payments_enabled(gateway: PaymentsGateway = Depends(get_payments_gateway)) -> PaymentsGateway:
    """503 payments_disabled, пока не задан ключ провайдера"""
    if not gateway.is_configured:
        raise PaymentsDisabled()
    return gateway


def get_donation_service(gateway: PaymentsGateway = Depends(require_payments_enabled)) -> DonationService:
    return DonationService(gateway, frontend_url=settings.FRONTEND_URL)
