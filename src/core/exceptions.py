# src/core/exceptions.py
from typing import Optional

UPSTREAM_MESSAGE_LIMIT = 200


class GiversException(Exception):
    """Базовое исключение платформы. Каждое несёт HTTP-статус и машинный код ошибки"""
    status_code = 500
    code = "internal_error"

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message or self.code)

    def to_dict(self) -> dict:
        return {"error": self.code}


class ValidationFailed(GiversException):
    status_code = 422
    code = "validation_failed"


class BadRequest(ValidationFailed):
    status_code = 400


class NotFound(GiversException):
    status_code = 404
    code = "not_found"


class ProjectNotFound(NotFound):
    code = "project_not_found"


class DonationNotFound(NotFound):
    code = "not_found"


class ProjectNotAcceptingDonations(GiversException):
    status_code = 422
    code = "project_not_accepting_donations"


class Forbidden(GiversException):
    status_code = 403
    code = "forbidden"


class Unauthorized(GiversException):
    status_code = 401
    code = "unauthorized"


class WebhookSignatureError(Unauthorized):
    """Подпись webhook не прошла проверку"""
    code = "signature_verification_failed"


class MalformedSignature(WebhookSignatureError):
    """В заголовке подписи нет t= или v1="""


class ReplayTooOld(WebhookSignatureError):
    """Метка времени подписи вне окна в 5 минут"""


class SignatureMismatch(WebhookSignatureError):
    """Ни одна v1 подпись не совпала с вычисленной"""


class UpstreamRejected(GiversException):
    """Провайдер ответил 4xx/5xx"""
    status_code = 422
    code = "upstream_rejected"

    def __init__(self, message: str, http_status: Optional[int] = None):
        self.http_status = http_status
        super().__init__(message=(message or "")[:UPSTREAM_MESSAGE_LIMIT])

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class Transport(GiversException):
    """Сетевая ошибка или ошибка БД"""
    status_code = 503
    code = "service_unavailable"

    def __init__(self, error: Exception, code: Optional[str] = None):
        self.error = error
        super().__init__(code=code, message=str(error))


class ConfigMissing(GiversException):
    """Не заданы ключи платёжного провайдера"""
    status_code = 503
    code = "payments_disabled"


class PaymentsDisabled(ConfigMissing):
    pass


class Conflict(GiversException):
    status_code = 409
    code = "conflict"


class Internal(GiversException):
    status_code = 500
    code = "internal_error"
