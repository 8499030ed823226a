# src/schemas/activity.py
from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    project_id: str
    project_name: str
    actor_name: Optional[str] = None
    amount: Optional[int] = None
    milestone: Optional[str] = None
    created_at: datetime


class ActivityFeedResponse(BaseModel):
    activities: List[ActivityResponse]
