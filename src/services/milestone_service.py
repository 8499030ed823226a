# src/services/milestone_service.py
import enum
from dataclasses import dataclass
from typing import List, Optional, Protocol


class MilestoneKind(str, enum.Enum):
    MIN_MONTHLY = "min_monthly"
    TARGET_MONTHLY = "target_monthly"


class MonthlyTargets(Protocol):
    owner_want_monthly: Optional[int]
    monthly_target: Optional[int]


@dataclass(frozen=True)
class Milestone:
    kind: MilestoneKind
    threshold: int
    total: int


def evaluate(project: MonthlyTargets, prior_monthly_total: int, new_donation_amount: int) -> List[Milestone]:
    """
    Пороги месяца, которые новый донат пересёк снизу вверх,
    в порядке min_monthly, target_monthly. Один донат может пересечь оба.
    """
    total = prior_monthly_total + new_donation_amount
    thresholds = (
        (MilestoneKind.MIN_MONTHLY, project.owner_want_monthly),
        (MilestoneKind.TARGET_MONTHLY, project.monthly_target),
    )
    return [
        Milestone(kind=kind, threshold=threshold, total=total)
        for kind, threshold in thresholds
        if threshold and threshold > 0 and prior_monthly_total < threshold <= total
    ]
