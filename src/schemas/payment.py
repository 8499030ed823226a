# src/schemas/payment.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime


class CheckoutRequest(BaseModel):
    """Запрос checkout. Без сессии пользователя донором считается donor_token"""
    project_id: str
    amount: int
    currency: Optional[str] = None
    is_recurring: bool = False
    message: Optional[str] = None
    locale: Optional[str] = None
    donor_token: Optional[str] = None


class CheckoutResponse(BaseModel):
    checkout_url: str


class WebhookAck(BaseModel):
    received: bool = True


class DonationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    amount: int
    currency: str
    is_recurring: bool
    message: Optional[str] = None
    paused: bool
    status: str
    created_at: datetime
    updated_at: datetime


class DonationListResponse(BaseModel):
    donations: List[DonationResponse]


class DonationPatch(BaseModel):
    amount: Optional[int] = Field(default=None)
    paused: Optional[bool] = None


class OkResponse(BaseModel):
    ok: bool = True


class TokenMigrationResponse(BaseModel):
    migrated_count: int
    already_migrated: bool
