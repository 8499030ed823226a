# src/schemas/project.py
from pydantic import BaseModel, ConfigDict
from typing import List
from datetime import datetime


class ChartPoint(BaseModel):
    """Точка графика: месяц, минимальная и целевая суммы, фактически собрано"""
    month: str
    min_amount: int
    target_amount: int
    actual_amount: int


class ChartResponse(BaseModel):
    chart: List[ChartPoint]


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    donor_name: str
    amount: int
    currency: str
    is_recurring: bool
    message: str
    created_at: datetime


class MessagesResponse(BaseModel):
    messages: List[MessageResponse]
    total: int


class OnboardingResponse(BaseModel):
    url: str
