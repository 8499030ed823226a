# src/endpoints/payments.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette import status

from src.core.exceptions import ValidationFailed
from src.database import models
from src.database.postgres import get_db
from src.dependencies.rbac import project_owner
from src.dependencies.services import get_donation_service, get_payments_gateway, require_payments_enabled
from src.schemas.payment import CheckoutRequest, CheckoutResponse, WebhookAck
from src.schemas.project import OnboardingResponse
from src.security.auth import get_optional_user
from src.services.donation_service import DonationService, Donor
from src.services.payments_gateway import PaymentsGateway
from src.services.project_service import project_service

SIGNATURE_HEADER = "Stripe-Signature"

payments_router = APIRouter(
    tags=["payments"],
    responses={404: {"description": "Not found"}}
)

connect_router = APIRouter(
    prefix="/payments/connect",
    tags=["payments"],
)


@payments_router.post("/donations/checkout", response_model=CheckoutResponse)
async def create_checkout(
        checkout: CheckoutRequest,
        current_user: Optional[models.User] = Depends(get_optional_user),
        service: DonationService = Depends(get_donation_service),
        db: AsyncSession = Depends(get_db)
):
    """Создание checkout-сессии. Донат появится только после подтверждения провайдером"""
    if current_user is not None:
        donor = Donor.user(current_user.id)
    elif checkout.donor_token and checkout.donor_token.strip():
        donor = Donor.token(checkout.donor_token.strip())
    else:
        raise ValidationFailed("donor_required")

    url = await service.create_checkout(
        db,
        project_id=checkout.project_id,
        amount=checkout.amount,
        donor=donor,
        currency=checkout.currency,
        is_recurring=checkout.is_recurring,
        message=checkout.message,
        locale=checkout.locale,
    )
    return CheckoutResponse(checkout_url=url)


@payments_router.post("/webhooks/payments", response_model=WebhookAck)
async def payments_webhook(
        request: Request,
        service: DonationService = Depends(get_donation_service),
        db: AsyncSession = Depends(get_db)
):
    """Вебхук провайдера. Подпись проверяется по сырому телу запроса"""
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER, "")

    await service.handle_webhook(db, payload, signature)
    return WebhookAck(received=True)


@connect_router.get("/onboarding", response_model=OnboardingResponse)
async def connect_onboarding(
        project: models.Project = Depends(project_owner),
        gateway: PaymentsGateway = Depends(require_payments_enabled)
):
    """Ссылка на подключение выплат для владельца проекта"""
    return OnboardingResponse(url=project_service.onboarding_url(gateway, project))


@connect_router.get("/callback")
async def connect_callback(
        code: Optional[str] = Query(default=None),
        state: Optional[str] = Query(default=None),
        gateway: PaymentsGateway = Depends(get_payments_gateway),
        db: AsyncSession = Depends(get_db)
):
    redirect_url = await project_service.complete_onboarding(db, gateway, code=code, state=state)
    return RedirectResponse(redirect_url, status_code=status.HTTP_302_FOUND)
