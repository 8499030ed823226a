# src/services/donation_service.py
"""
Жизненный цикл доната: checkout, приём webhook-ов провайдера, идемпотентная
запись разовых и ежемесячных донатов, управление подпиской и перенос
анонимных донатов на пользователя.

Транзакциями управляет этот сервис: репозитории только делают flush.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.core.exceptions import (
    BadRequest,
    ConfigMissing,
    ProjectNotAcceptingDonations,
    ProjectNotFound,
    ValidationFailed,
    WebhookSignatureError,
)
from src.database.models import (
    ActivityType, Donation, DonationStatus, DonorType, Project
)
from src.database.models.base import utcnow
from src.repository.donations_repository import (
    MAX_DONATION_AMOUNT, InsertResult, RebindResult, donations_repository, month_start
)
from src.repository.projects_repository import projects_repository
from src.repository.user_repository import user_repository
from src.services.activity_service import activity_service
from src.services.milestone_service import evaluate
from src.services.payments_gateway import (
    CheckoutParams, EventKind, PaymentsGateway, WebhookEvent
)

logger = logging.getLogger(__name__)

MESSAGE_MAX_LENGTH = 500
STORED_MESSAGE_MAX_LENGTH = 1024
LIST_MAX_LIMIT = 50


class WebhookResult(str, enum.Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass(frozen=True)
class Donor:
    """Донор: пользователь или анонимный токен. Токен никогда не трактуется как user id"""
    type: DonorType
    id: str

    @classmethod
    def user(cls, user_id: str) -> "Donor":
        return cls(DonorType.USER, user_id)

    @classmethod
    def token(cls, token: str) -> "Donor":
        return cls(DonorType.TOKEN, token)


class DonationService:
    def __init__(self, gateway: PaymentsGateway, frontend_url: Optional[str] = None):
        self.gateway = gateway
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")

    # ---------- Checkout ----------

    async def create_checkout(
            self,
            db: AsyncSession,
            project_id: str,
            amount: int,
            donor: Donor,
            currency: Optional[str] = None,
            is_recurring: bool = False,
            message: Optional[str] = None,
            locale: Optional[str] = None
    ) -> str:
        """Проверка запроса и создание checkout-сессии. Ничего не сохраняет"""
        project = await projects_repository.get(db, project_id)
        if project is None:
            raise ProjectNotFound()
        if not project.accepts_donations:
            raise ProjectNotAcceptingDonations()

        if isinstance(amount, bool) or not isinstance(amount, int) or not 0 < amount <= MAX_DONATION_AMOUNT:
            raise ValidationFailed("amount_out_of_range")

        project_currency = (project.currency or "").lower()
        currency = (currency or project_currency).lower()
        if currency != project_currency:
            raise ValidationFailed("currency_mismatch")

        message = (message or "").strip()
        if len(message) > MESSAGE_MAX_LENGTH:
            raise ValidationFailed("message_too_long")

        if not donor.id:
            raise ValidationFailed("donor_required")

        project_url = f"{self.frontend_url}/projects/{project.id}"
        return await self.gateway.create_checkout(CheckoutParams(
            project_external_account_id=project.external_account_id,
            project_id=project.id,
            amount=amount,
            currency=currency,
            is_recurring=is_recurring,
            message=message,
            locale=locale,
            success_url=f"{project_url}?donation=ok",
            cancel_url=f"{project_url}?donation=cancelled",
            donor_type=donor.type.value,
            donor_id=donor.id,
        ))

    # ---------- Webhooks ----------

    async def handle_webhook(self, db: AsyncSession, raw_body: bytes, signature_header: str) -> WebhookResult:
        """
        Приём события провайдера. Подпись проверяется по сырым байтам тела.
        Журнал событий и запись доната коммитятся одной транзакцией: при ошибке
        откатывается всё, и провайдер повторит доставку.
        """
        try:
            self.gateway.verify_webhook(raw_body, signature_header)
        except ConfigMissing as e:
            logger.error(f"Webhook rejected: {e.message}")
            raise WebhookSignatureError() from e
        event = self.gateway.parse_event(raw_body)
        logger.info(f"Webhook received: type={event.type}, id={event.id}")

        kind = event.kind
        if kind == EventKind.OTHER:
            return WebhookResult.IGNORED
        if not event.id:
            raise ValidationFailed("invalid_payload")

        try:
            if not await donations_repository.mark_event_processed(db, event.id, event.type):
                await db.commit()
                logger.info(f"Duplicate webhook suppressed: {event.id}")
                return WebhookResult.DUPLICATE

            if kind == EventKind.PAYMENT_SUCCEEDED:
                await self._on_payment_succeeded(db, event)
            elif kind in (EventKind.SUBSCRIPTION_STARTED, EventKind.INVOICE_PAID):
                await self._on_subscription_charged(db, event)
            elif kind == EventKind.SUBSCRIPTION_CANCELLED:
                await self._on_subscription_cancelled(db, event)

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return WebhookResult.PROCESSED

    def _donation_fields(self, event: WebhookEvent, is_recurring: bool, external_id: str) -> Optional[Dict[str, Any]]:
        """Поля доната из метаданных события; None если их не хватает"""
        obj = event.object
        metadata = obj.metadata
        project_id = metadata.get("project_id")
        donor_type = metadata.get("donor_type")
        donor_id = metadata.get("donor_id")
        if not project_id or not donor_id or donor_type not in (DonorType.USER.value, DonorType.TOKEN.value):
            return None

        amount = obj.amount
        currency = obj.currency
        if obj.plan is not None:
            amount = amount if amount is not None else obj.plan.amount
            currency = currency or obj.plan.currency
        if not amount or amount <= 0 or not currency:
            return None

        message = (metadata.get("message") or "").strip()
        return {
            "project_id": project_id,
            "donor_type": donor_type,
            "donor_id": donor_id,
            "amount": amount,
            "currency": currency.lower(),
            "is_recurring": is_recurring,
            "message": message[:STORED_MESSAGE_MAX_LENGTH] or None,
            "paused": False,
            "external_payment_id": external_id,
            "status": (DonationStatus.ACTIVE if is_recurring else DonationStatus.COMPLETED).value,
        }

    async def _on_payment_succeeded(self, db: AsyncSession, event: WebhookEvent) -> None:
        if event.object.metadata.get("is_recurring") == "true":
            # платежи подписки фиксируются событием invoice.paid
            return
        fields = self._donation_fields(event, is_recurring=False, external_id=event.object.id)
        if fields is None or not event.object.id:
            logger.warning(f"Webhook {event.id} ({event.type}) ignored: unusable metadata")
            return
        await self._record(db, fields)

    async def _on_subscription_charged(self, db: AsyncSession, event: WebhookEvent) -> None:
        subscription_ref = event.subscription_ref
        if not subscription_ref:
            logger.warning(f"Webhook {event.id} ({event.type}) ignored: no subscription reference")
            return

        fields = self._donation_fields(event, is_recurring=True, external_id=subscription_ref)
        if fields is None:
            existing = await donations_repository.get_subscription(db, subscription_ref)
            if existing is None:
                logger.warning(f"Webhook {event.id} ({event.type}) ignored: unusable metadata")
                return
            await self._refresh_subscription(db, existing, event.kind)
            return

        result = await self._record(db, fields)
        if not result.inserted:
            await self._refresh_subscription(db, result.donation, event.kind)

    async def _refresh_subscription(self, db: AsyncSession, donation: Donation, kind: EventKind) -> None:
        # состояние паузы у провайдера главнее локального
        if kind == EventKind.INVOICE_PAID and donation.status == DonationStatus.PAUSED.value:
            await donations_repository.set_status(db, donation, DonationStatus.ACTIVE)
            logger.info(f"Subscription {donation.external_payment_id} charged while paused locally, set active")
            return
        await donations_repository.touch(db, donation)

    async def _on_subscription_cancelled(self, db: AsyncSession, event: WebhookEvent) -> None:
        subscription_ref = event.subscription_ref
        if not subscription_ref:
            logger.warning(f"Webhook {event.id} ({event.type}) ignored: no subscription reference")
            return

        existing = await donations_repository.get_subscription(db, subscription_ref)
        if existing is not None:
            if existing.status != DonationStatus.CANCELLED.value:
                await donations_repository.set_status(db, existing, DonationStatus.CANCELLED)
                logger.info(f"Subscription {subscription_ref} cancelled by provider")
            return

        # отмена пришла раньше события о создании
        fields = self._donation_fields(event, is_recurring=True, external_id=subscription_ref)
        if fields is None:
            logger.warning(f"Webhook {event.id} ({event.type}) ignored: unknown subscription {subscription_ref}")
            return
        fields["status"] = DonationStatus.CANCELLED.value
        await self._record(db, fields)

    async def _record(self, db: AsyncSession, fields: Dict[str, Any]) -> InsertResult:
        project = await projects_repository.get(db, fields["project_id"])
        if project is None:
            raise ProjectNotFound()

        result = await donations_repository.insert_if_absent(db, **fields)
        if result.inserted:
            donation = result.donation
            logger.info(
                f"Donation recorded: project={project.id}, amount={donation.amount} {donation.currency}, "
                f"recurring={donation.is_recurring}, ref={donation.external_payment_id}"
            )
            await self._record_activity(db, project, donation)
        return result

    async def _record_activity(self, db: AsyncSession, project: Project, donation: Donation) -> None:
        now = utcnow()
        prior = await donations_repository.current_month_total(db, project.id, exclude_id=donation.id, now=now)
        milestones = evaluate(project, prior, donation.amount)

        actor_name = None
        if donation.donor_type == DonorType.USER.value:
            actor_name = await user_repository.get_display_name(db, donation.donor_id)

        await activity_service.record(
            db, ActivityType.DONATION, project, actor_name=actor_name, amount=donation.amount
        )
        for milestone in milestones:
            # порог фиксируется один раз за календарный месяц
            if await activity_service.milestone_recorded(db, project.id, milestone.kind.value, month_start(now)):
                logger.info(f"Milestone {milestone.kind.value} already recorded this month for project {project.id}")
                continue
            logger.info(f"Milestone {milestone.kind.value} reached by project {project.id}: {milestone.total}")
            await activity_service.record(
                db,
                ActivityType.MILESTONE_REACHED,
                project,
                amount=milestone.threshold,
                milestone=milestone.kind.value,
            )

    # ---------- Donor token migration ----------

    async def migrate_token(self, db: AsyncSession, token: Optional[str], user_id: str) -> RebindResult:
        if not token or not token.strip():
            raise BadRequest("donor_token_missing")
        try:
            result = await donations_repository.rebind_token(db, token.strip(), user_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            f"Donor token migration for user {user_id}: "
            f"migrated={result.migrated}, already_migrated={result.already_migrated}"
        )
        return result

    # ---------- My donations ----------

    async def list_user_donations(
            self,
            db: AsyncSession,
            user_id: str,
            limit: int = LIST_MAX_LIMIT,
            offset: int = 0
    ) -> List[Donation]:
        limit = min(max(limit, 1), LIST_MAX_LIMIT)
        return await donations_repository.list_by_user(db, user_id, limit=limit, offset=max(offset, 0))

    async def update_donation(
            self,
            db: AsyncSession,
            donation_id: str,
            user_id: str,
            amount: Optional[int] = None,
            paused: Optional[bool] = None
    ) -> Donation:
        """
        Изменение суммы и/или паузы. Пауза сначала применяется у провайдера;
        при его ошибке локальное состояние не меняется. Сумма меняется только локально.
        """
        try:
            donation = await donations_repository.get_owned(db, donation_id, user_id)
            if paused is not None:
                self._require_live_subscription(donation)
                if amount is not None and not 0 < amount <= MAX_DONATION_AMOUNT:
                    raise ValidationFailed("amount_out_of_range")
                if paused != donation.paused:
                    if paused:
                        await self.gateway.pause_subscription(donation.external_payment_id)
                    else:
                        await self.gateway.resume_subscription(donation.external_payment_id)

            donation = await donations_repository.patch(db, donation_id, user_id, amount=amount, paused=paused)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return donation

    async def pause(self, db: AsyncSession, donation_id: str, user_id: str) -> Donation:
        return await self.update_donation(db, donation_id, user_id, paused=True)

    async def resume(self, db: AsyncSession, donation_id: str, user_id: str) -> Donation:
        return await self.update_donation(db, donation_id, user_id, paused=False)

    async def cancel(self, db: AsyncSession, donation_id: str, user_id: str) -> Donation:
        try:
            donation = await donations_repository.get_owned(db, donation_id, user_id)
            if not donation.is_recurring:
                raise ValidationFailed("not_a_subscription")
            if donation.status != DonationStatus.CANCELLED.value:
                await self.gateway.cancel_subscription(donation.external_payment_id)
                donation = await donations_repository.set_status(db, donation, DonationStatus.CANCELLED)
                logger.info(f"Subscription {donation.external_payment_id} cancelled by donor {user_id}")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return donation

    async def delete_donation(self, db: AsyncSession, donation_id: str, user_id: str) -> Donation:
        """Мягкое удаление; живая подписка сначала отменяется у провайдера"""
        try:
            donation = await donations_repository.get_owned(db, donation_id, user_id)
            if donation.is_recurring and donation.status != DonationStatus.CANCELLED.value:
                await self.gateway.cancel_subscription(donation.external_payment_id)
            donation = await donations_repository.soft_delete(db, donation_id, user_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(f"Donation {donation_id} deleted by donor {user_id}")
        return donation

    @staticmethod
    def _require_live_subscription(donation: Donation) -> None:
        if not donation.is_recurring:
            raise ValidationFailed("paused_requires_recurring")
        if donation.status == DonationStatus.CANCELLED.value:
            raise ValidationFailed("subscription_cancelled")
