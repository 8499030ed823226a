# src/repository/donations_repository.py
import hashlib
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import DonationNotFound, Forbidden, ValidationFailed
from src.database.models import (
    Donation, DonationStatus, DonorType, ProcessedEvent, TokenMigration, User
)
from src.database.models.base import new_id, utcnow
from src.repository.base import BaseRepository

MAX_DONATION_AMOUNT = 1_000_000
ANONYMOUS_DONOR_NAME = "Anonymous"


@dataclass
class InsertResult:
    inserted: bool
    donation: Donation


@dataclass
class RebindResult:
    migrated: int
    already_migrated: bool


@dataclass
class MonthlySum:
    month: str  # YYYY-MM
    amount: int


@dataclass
class DonationMessage:
    id: str
    donor_name: str
    amount: int
    currency: str
    is_recurring: bool
    message: str
    created_at: datetime


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class DonationsRepository(BaseRepository[Donation]):
    def __init__(self):
        super().__init__(Donation)

    async def get_by_external_id(
            self,
            db: AsyncSession,
            project_id: str,
            external_payment_id: str
    ) -> Optional[Donation]:
        stmt = select(Donation).where(
            Donation.project_id == project_id,
            Donation.external_payment_id == external_payment_id
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_subscription(self, db: AsyncSession, subscription_ref: str) -> Optional[Donation]:
        """Поиск подписки по ссылке провайдера (в событиях отмены project_id может отсутствовать)"""
        stmt = select(Donation).where(
            Donation.external_payment_id == subscription_ref,
            Donation.is_recurring.is_(True)
        ).order_by(Donation.created_at).limit(1)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def insert_if_absent(self, db: AsyncSession, **fields) -> InsertResult:
        """
        Идемпотентная вставка по (project_id, external_payment_id).
        Существующая строка не изменяется. Гонка двух вставок решается
        уникальным индексом внутри SAVEPOINT.
        """
        existing = await self.get_by_external_id(db, fields["project_id"], fields["external_payment_id"])
        if existing is not None:
            return InsertResult(inserted=False, donation=existing)

        fields.setdefault("id", new_id())
        donation = Donation(**fields)
        try:
            async with db.begin_nested():
                db.add(donation)
                await db.flush()
        except IntegrityError:
            existing = await self.get_by_external_id(db, fields["project_id"], fields["external_payment_id"])
            if existing is None:
                # нарушено другое ограничение (например, внешний ключ)
                raise
            return InsertResult(inserted=False, donation=existing)

        return InsertResult(inserted=True, donation=donation)

    async def mark_event_processed(
            self,
            db: AsyncSession,
            event_id: str,
            event_type: Optional[str] = None
    ) -> bool:
        """Запись в журнал обработанных событий. False - событие уже применялось"""
        try:
            async with db.begin_nested():
                db.add(ProcessedEvent(event_id=event_id, event_type=event_type))
                await db.flush()
        except IntegrityError:
            return False
        return True

    async def list_by_user(
            self,
            db: AsyncSession,
            user_id: str,
            limit: int = 50,
            offset: int = 0
    ) -> List[Donation]:
        """Донаты пользователя, новые первыми"""
        return await self.get_by_field(
            db,
            field_name="donor_id",
            field_value=user_id,
            order_by=(Donation.created_at.desc(), Donation.id.desc()),
            skip=offset,
            limit=limit,
            donor_type=DonorType.USER.value,
            deleted=False,
        )

    async def list_messages_by_project(
            self,
            db: AsyncSession,
            project_id: str,
            limit: int = 20,
            offset: int = 0,
            sort: str = "desc",
            donor_filter: Optional[str] = None
    ) -> Tuple[List[DonationMessage], int]:
        """Сообщения доноров проекта и их общее количество"""
        donor_name = func.coalesce(User.name, ANONYMOUS_DONOR_NAME)
        stmt = (
            select(Donation, donor_name.label("donor_name"))
            .outerjoin(User, and_(
                Donation.donor_type == DonorType.USER.value,
                User.id == Donation.donor_id
            ))
            .where(
                Donation.project_id == project_id,
                Donation.deleted.is_(False),
                Donation.message.isnot(None),
                Donation.message != ""
            )
        )
        if donor_filter:
            pattern = donor_filter.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            stmt = stmt.where(donor_name.ilike(f"%{pattern}%", escape="\\"))

        total = await db.scalar(select(func.count()).select_from(stmt.subquery())) or 0

        if sort == "asc":
            stmt = stmt.order_by(Donation.created_at.asc(), Donation.id.asc())
        else:
            stmt = stmt.order_by(Donation.created_at.desc(), Donation.id.desc())
        result = await db.execute(stmt.offset(offset).limit(limit))

        messages = [
            DonationMessage(
                id=donation.id,
                donor_name=name,
                amount=donation.amount,
                currency=donation.currency,
                is_recurring=donation.is_recurring,
                message=donation.message,
                created_at=donation.created_at,
            )
            for donation, name in result.all()
        ]
        return messages, total

    async def get_owned(self, db: AsyncSession, donation_id: str, user_id: str) -> Donation:
        """Донат, принадлежащий пользователю. Чужой - Forbidden, отсутствующий или удалённый - NotFound"""
        donation = await self.get(db, donation_id)
        if donation is None or donation.deleted:
            raise DonationNotFound()
        if donation.donor_type != DonorType.USER.value or donation.donor_id != user_id:
            raise Forbidden()
        return donation

    async def patch(
            self,
            db: AsyncSession,
            donation_id: str,
            user_id: str,
            amount: Optional[int] = None,
            paused: Optional[bool] = None
    ) -> Donation:
        donation = await self.get_owned(db, donation_id, user_id)

        if paused is not None:
            if not donation.is_recurring:
                raise ValidationFailed("paused_requires_recurring")
            if donation.status == DonationStatus.CANCELLED.value:
                raise ValidationFailed("subscription_cancelled")
        if amount is not None and not 0 < amount <= MAX_DONATION_AMOUNT:
            raise ValidationFailed("amount_out_of_range")

        if paused is not None:
            donation.paused = paused
            donation.status = (DonationStatus.PAUSED if paused else DonationStatus.ACTIVE).value
        if amount is not None:
            donation.amount = amount
        donation.updated_at = utcnow()
        await db.flush()
        return donation

    async def soft_delete(self, db: AsyncSession, donation_id: str, user_id: str) -> Donation:
        donation = await self.get_owned(db, donation_id, user_id)
        donation.deleted = True
        if donation.is_recurring:
            donation.status = DonationStatus.CANCELLED.value
            donation.paused = False
        donation.updated_at = utcnow()
        await db.flush()
        return donation

    async def set_status(self, db: AsyncSession, donation: Donation, status: DonationStatus) -> Donation:
        donation.status = status.value
        donation.paused = status == DonationStatus.PAUSED
        donation.updated_at = utcnow()
        await db.flush()
        return donation

    async def touch(self, db: AsyncSession, donation: Donation) -> None:
        donation.updated_at = utcnow()
        await db.flush()

    async def monthly_sum_by_project(self, db: AsyncSession, project_id: str) -> List[MonthlySum]:
        """Суммы по календарным месяцам (UTC), по возрастанию месяца"""
        stmt = select(Donation.created_at, Donation.amount).where(
            Donation.project_id == project_id,
            Donation.deleted.is_(False)
        ).order_by(Donation.created_at)
        result = await db.execute(stmt)

        sums: "OrderedDict[str, int]" = OrderedDict()
        for created_at, amount in result.all():
            month = created_at.strftime("%Y-%m")
            sums[month] = sums.get(month, 0) + amount
        return [MonthlySum(month=month, amount=amount) for month, amount in sums.items()]

    async def current_month_total(
            self,
            db: AsyncSession,
            project_id: str,
            exclude_id: Optional[str] = None,
            now: Optional[datetime] = None
    ) -> int:
        """Сумма донатов проекта за текущий месяц, без доната exclude_id"""
        stmt = select(func.coalesce(func.sum(Donation.amount), 0)).where(
            Donation.project_id == project_id,
            Donation.deleted.is_(False),
            Donation.created_at >= month_start(now)
        )
        if exclude_id is not None:
            stmt = stmt.where(Donation.id != exclude_id)
        return int(await db.scalar(stmt) or 0)

    async def rebind_token(self, db: AsyncSession, token: str, user_id: str) -> RebindResult:
        """Перенос донатов анонимного токена на пользователя с записью в аудит"""
        token_hash = hash_token(token)
        stmt = (
            update(Donation)
            .where(
                Donation.donor_type == DonorType.TOKEN.value,
                Donation.donor_id == token
            )
            .values(donor_type=DonorType.USER.value, donor_id=user_id, updated_at=utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        result = await db.execute(stmt)
        migrated = result.rowcount or 0

        if migrated > 0:
            db.add(TokenMigration(token_hash=token_hash, user_id=user_id, migrated_count=migrated))
            await db.flush()
            return RebindResult(migrated=migrated, already_migrated=False)

        return RebindResult(migrated=0, already_migrated=await self.already_migrated(db, token_hash, user_id))

    async def already_migrated(self, db: AsyncSession, token_hash: str, user_id: str) -> bool:
        audit = await db.scalar(
            select(func.count()).select_from(TokenMigration).where(
                TokenMigration.token_hash == token_hash,
                TokenMigration.user_id == user_id
            )
        )
        if not audit:
            return False
        owned = await db.scalar(
            select(func.count()).select_from(Donation).where(
                Donation.donor_type == DonorType.USER.value,
                Donation.donor_id == user_id
            )
        )
        return bool(owned)


donations_repository = DonationsRepository()
