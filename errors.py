"""
Service error hierarchy.

Every failure that leaves a service carries an HTTP-mappable status and a
short machine code. Routers let these propagate to the handler installed in
main.py; socket handlers emit the code as an `error` event.
"""
from typing import Optional


class ServiceError(Exception):
    status_code = 500
    code = "internal"
    default_message = "Error interno del servidor"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    code = "validation"
    default_message = "Datos inválidos"


class AuthenticationError(ServiceError):
    status_code = 401
    code = "unauthorized"
    default_message = "Token inválido"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "forbidden"
    default_message = "No autorizado"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Recurso no encontrado"


class ConflictError(ServiceError):
    status_code = 409
    code = "conflict"
    default_message = "Conflicto"


class InsufficientCreditsError(ServiceError):
    status_code = 400
    code = "insufficient_credits"
    default_message = "Créditos insuficientes"


class DuplicatePaymentError(ConflictError):
    code = "duplicate_payment"
    default_message = "Pago ya procesado"


class PaymentProviderError(ServiceError):
    status_code = 502
    code = "payment_provider"
    default_message = "Error comunicándose con Mercado Pago"


def http_status_for(exc: Exception) -> int:
    if isinstance(exc, ServiceError):
        return exc.status_code
    return 500
