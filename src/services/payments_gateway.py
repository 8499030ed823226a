# src/services/payments_gateway.py
"""
Клиент платёжного провайдера (Stripe).

Переводит доменные запросы в протокол провайдера и обратно: onboarding
connected-аккаунта, checkout-сессии, проверка подписи webhook, разбор событий,
пауза/возобновление/отмена подписки. Ничего не сохраняет и не знает о проектах,
донорах и ленте активности.
"""
import asyncio
import enum
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import stripe

from src.core.exceptions import (
    BadRequest,
    ConfigMissing,
    MalformedSignature,
    ReplayTooOld,
    SignatureMismatch,
    Transport,
    UpstreamRejected,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

REPLAY_TOLERANCE_SECONDS = 5 * 60
METADATA_MESSAGE_LIMIT = 500

# Повторы при сетевых ошибках: 100 ms, 400 ms, ...
MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 0.1
BACKOFF_FACTOR = 4


class EventKind(str, enum.Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    SUBSCRIPTION_STARTED = "subscription_started"
    INVOICE_PAID = "invoice_paid"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    OTHER = "other"


EVENT_KINDS = {
    "payment_intent.succeeded": EventKind.PAYMENT_SUCCEEDED,
    "checkout.session.completed": EventKind.SUBSCRIPTION_STARTED,
    "customer.subscription.created": EventKind.SUBSCRIPTION_STARTED,
    "invoice.paid": EventKind.INVOICE_PAID,
    "invoice.payment_succeeded": EventKind.INVOICE_PAID,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_CANCELLED,
    "customer.subscription.cancelled": EventKind.SUBSCRIPTION_CANCELLED,
}


@dataclass
class Plan:
    amount: Optional[int] = None
    currency: Optional[str] = None


@dataclass
class EventObject:
    """data.object события в том объёме, который нужен ядру"""
    id: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    plan: Optional[Plan] = None
    subscription: Optional[str] = None
    mode: Optional[str] = None


@dataclass
class WebhookEvent:
    type: str
    id: str
    object: EventObject

    @property
    def kind(self) -> EventKind:
        if self.type == "checkout.session.completed" and self.object.mode != "subscription":
            # разовый checkout фиксируется событием payment_intent.succeeded
            return EventKind.OTHER
        return EVENT_KINDS.get(self.type, EventKind.OTHER)

    @property
    def subscription_ref(self) -> Optional[str]:
        """Ссылка на подписку: у событий подписки это сам объект, у checkout/invoice - поле subscription"""
        if self.type.startswith("customer.subscription."):
            return self.object.id or None
        return self.object.subscription

    def to_dict(self) -> Dict[str, Any]:
        obj: Dict[str, Any] = {"id": self.object.id, "metadata": dict(self.object.metadata)}
        if self.object.amount is not None:
            obj["amount"] = self.object.amount
        if self.object.currency is not None:
            obj["currency"] = self.object.currency
        if self.object.plan is not None:
            obj["plan"] = {"amount": self.object.plan.amount, "currency": self.object.plan.currency}
        if self.object.subscription is not None:
            obj["subscription"] = self.object.subscription
        if self.object.mode is not None:
            obj["mode"] = self.object.mode
        return {"id": self.id, "type": self.type, "data": {"object": obj}}


@dataclass
class CheckoutParams:
    project_external_account_id: Optional[str]
    project_id: str
    amount: int
    currency: str
    is_recurring: bool
    success_url: str
    cancel_url: str
    donor_type: str
    donor_id: str
    message: str = ""
    locale: Optional[str] = None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _ref(value: Any) -> Optional[str]:
    """Ссылка на объект провайдера может прийти строкой или развёрнутым объектом"""
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _parse_plan(obj: Dict[str, Any]) -> Optional[Plan]:
    plan = obj.get("plan")
    if isinstance(plan, dict):
        return Plan(amount=_as_int(plan.get("amount")), currency=plan.get("currency"))

    items = (obj.get("items") or {}).get("data") or []
    if items and isinstance(items[0], dict):
        price = items[0].get("price") or items[0].get("plan") or {}
        amount = price.get("unit_amount", price.get("amount"))
        return Plan(amount=_as_int(amount), currency=price.get("currency"))
    return None


def _parse_object(obj: Dict[str, Any]) -> EventObject:
    amount = None
    for key in ("amount", "amount_total", "amount_paid"):
        amount = _as_int(obj.get(key))
        if amount is not None:
            break

    # invoice хранит метаданные подписки в subscription_details
    details = obj.get("subscription_details") or (obj.get("parent") or {}).get("subscription_details") or {}
    metadata = obj.get("metadata") or details.get("metadata") or {}

    return EventObject(
        id=str(obj.get("id") or ""),
        amount=amount,
        currency=obj.get("currency"),
        metadata={str(k): str(v) for k, v in metadata.items() if v is not None},
        plan=_parse_plan(obj),
        subscription=_ref(obj.get("subscription")) or _ref(details.get("subscription")),
        mode=obj.get("mode"),
    )


def parse_signature_header(header: str) -> Tuple[int, List[str]]:
    """Разбор `t=<unix>,v1=<hex>,v1=<hex>`. Другие схемы (v0 и т.п.) игнорируются"""
    timestamp: Optional[int] = None
    signatures: List[str] = []
    for part in (header or "").split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t" and timestamp is None:
            try:
                timestamp = int(value)
            except ValueError:
                raise MalformedSignature(message="invalid timestamp in signature header")
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise MalformedSignature(message="signature header lacks t or v1")
    return timestamp, signatures


class PaymentsGateway:
    def __init__(
            self,
            secret_key: str = "",
            webhook_secret: str = "",
            connect_client_id: str = "",
            connect_redirect_url: str = "",
            platform_fee_percent: int = 0,
            timeout: float = 30.0,
            client: Optional[stripe.StripeClient] = None,
            clock: Optional[Callable[[], float]] = None,
            sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.connect_client_id = connect_client_id
        self.connect_redirect_url = connect_redirect_url
        self.platform_fee_percent = platform_fee_percent
        self.timeout = timeout
        self._client = client
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _stripe(self) -> stripe.StripeClient:
        if not self.secret_key:
            raise ConfigMissing(message="PAYMENTS_SECRET_KEY is not set")
        if self._client is None:
            self._client = stripe.StripeClient(
                self.secret_key,
                client_id=self.connect_client_id or None,
                http_client=stripe.HTTPXClient(timeout=self.timeout, allow_sync_methods=True),
                max_network_retries=0,
            )
        return self._client

    async def _request(self, action: str, call: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await asyncio.wait_for(call(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise Transport(e, code="payments_unavailable") from e
        except stripe.APIConnectionError as e:
            raise Transport(e, code="payments_unavailable") from e
        except stripe.StripeError as e:
            logger.warning(f"Payments provider rejected {action}: {e.http_status} {e.user_message or e}")
            raise UpstreamRejected(e.user_message or str(e), http_status=e.http_status) from e

    async def _request_with_retry(self, action: str, call: Callable[[], Awaitable[Any]]) -> Any:
        for attempt in range(MAX_ATTEMPTS):
            try:
                return await self._request(action, call)
            except Transport as e:
                if attempt == MAX_ATTEMPTS - 1:
                    logger.error(f"{action} failed after {MAX_ATTEMPTS} attempts: {e}")
                    raise
                delay = BACKOFF_BASE_SECONDS * BACKOFF_FACTOR ** attempt
                logger.warning(f"{action} failed ({e}), retrying in {delay:.1f}s ({attempt + 1}/{MAX_ATTEMPTS})")
                await self._sleep(delay)

    # ---------- Connected account ----------

    def onboarding_link(self, state: str) -> str:
        """URL onboarding-а connected-аккаунта владельца проекта; state вернётся в callback без изменений"""
        if not self.connect_client_id:
            raise ConfigMissing(message="PAYMENTS_CONNECT_CLIENT_ID is not set")
        params = {
            "response_type": "code",
            "client_id": self.connect_client_id,
            "scope": "read_write",
            "state": state,
        }
        if self.connect_redirect_url:
            params["redirect_uri"] = self.connect_redirect_url
        return self._stripe().oauth.authorize_url(params=params)

    async def exchange_account(self, code: str) -> str:
        """Обмен кода, вернувшегося после onboarding-а, на ссылку connected-аккаунта"""
        client = self._stripe()
        token = await self._request(
            "account exchange",
            lambda: asyncio.to_thread(
                client.oauth.token,
                params={"grant_type": "authorization_code", "code": code},
            ),
        )
        account_id = token.get("stripe_user_id") if hasattr(token, "get") else None
        if not account_id:
            raise UpstreamRejected("account exchange returned no account id")
        return account_id

    # ---------- Checkout ----------

    async def create_checkout(self, params: CheckoutParams) -> str:
        """Создание hosted checkout-сессии, возвращает URL для редиректа"""
        client = self._stripe()
        if isinstance(params.amount, bool) or not isinstance(params.amount, int) or params.amount <= 0:
            raise ValidationFailed("invalid_amount")
        currency = params.currency.lower()

        metadata = {
            "project_id": params.project_id,
            "donor_type": params.donor_type,
            "donor_id": params.donor_id,
            "is_recurring": "true" if params.is_recurring else "false",
        }
        if params.message:
            metadata["message"] = params.message[:METADATA_MESSAGE_LIMIT]

        price_data: Dict[str, Any] = {
            "currency": currency,
            "unit_amount": params.amount,
            "product_data": {"name": "Monthly support" if params.is_recurring else "Donation"},
        }
        session_params: Dict[str, Any] = {
            "line_items": [{"price_data": price_data, "quantity": 1}],
            "success_url": params.success_url,
            "cancel_url": params.cancel_url,
            "locale": params.locale or "auto",
            "metadata": metadata,
        }
        options: Dict[str, Any] = {}

        if params.is_recurring:
            price_data["recurring"] = {"interval": "month"}
            session_params["mode"] = "subscription"
            session_params["subscription_data"] = {"metadata": metadata}
        else:
            session_params["mode"] = "payment"
            session_params["payment_intent_data"] = {"metadata": metadata}

        if params.project_external_account_id:
            options["stripe_account"] = params.project_external_account_id
            if self.platform_fee_percent > 0:
                if params.is_recurring:
                    session_params["subscription_data"]["application_fee_percent"] = self.platform_fee_percent
                else:
                    session_params["payment_intent_data"]["application_fee_amount"] = (
                        params.amount * self.platform_fee_percent // 100
                    )

        session = await self._request(
            "checkout",
            lambda: client.checkout.sessions.create_async(params=session_params, options=options),
        )
        url = getattr(session, "url", None)
        if not url:
            raise UpstreamRejected("checkout session has no url")

        logger.info(f"Checkout session created: project={params.project_id}, recurring={params.is_recurring}")
        return url

    # ---------- Webhooks ----------

    def verify_webhook(self, raw_body: bytes, signature_header: str) -> None:
        """
        Проверка подписи webhook: HMAC-SHA256(secret, t + "." + body) по точным байтам тела.
        Метка времени должна отличаться от текущего времени не более чем на 5 минут.
        """
        if not self.webhook_secret:
            raise ConfigMissing(message="PAYMENTS_WEBHOOK_SECRET is not set")

        timestamp, _ = parse_signature_header(signature_header)
        if abs(self._clock() - timestamp) > REPLAY_TOLERANCE_SECONDS:
            raise ReplayTooOld(message="webhook timestamp outside tolerance")

        try:
            payload = raw_body.decode("utf-8")
            stripe.WebhookSignature.verify_header(payload, signature_header, self.webhook_secret)
        except (UnicodeDecodeError, stripe.SignatureVerificationError) as e:
            raise SignatureMismatch(message=str(e)) from e

    def parse_event(self, raw_body: bytes) -> WebhookEvent:
        """Разбор конверта события без проверки семантики"""
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise BadRequest("invalid_json") from e
        if not isinstance(payload, dict):
            raise BadRequest("invalid_json")

        obj = (payload.get("data") or {}).get("object") or {}
        return WebhookEvent(
            type=str(payload.get("type") or ""),
            id=str(payload.get("id") or ""),
            object=_parse_object(obj if isinstance(obj, dict) else {}),
        )

    # ---------- Subscriptions ----------

    async def pause_subscription(self, sub_ref: str) -> None:
        client = self._stripe()
        options = {"idempotency_key": f"pause-{uuid.uuid4()}"}
        await self._request_with_retry(
            "pause subscription",
            lambda: client.subscriptions.update_async(
                sub_ref, params={"pause_collection": {"behavior": "void"}}, options=options
            ),
        )
        logger.info(f"Subscription paused at provider: {sub_ref}")

    async def resume_subscription(self, sub_ref: str) -> None:
        client = self._stripe()
        options = {"idempotency_key": f"resume-{uuid.uuid4()}"}
        await self._request_with_retry(
            "resume subscription",
            lambda: client.subscriptions.update_async(
                sub_ref, params={"pause_collection": ""}, options=options
            ),
        )
        logger.info(f"Subscription resumed at provider: {sub_ref}")

    async def cancel_subscription(self, sub_ref: str) -> None:
        client = self._stripe()
        options = {"idempotency_key": f"cancel-{uuid.uuid4()}"}
        await self._request_with_retry(
            "cancel subscription",
            lambda: client.subscriptions.cancel_async(sub_ref, options=options),
        )
        logger.info(f"Subscription cancelled at provider: {sub_ref}")
