import structlog
from fastapi import APIRouter, Depends, Request
from fastapi_limiter.depends import RateLimiter
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from metrics import WEBHOOKS_TOTAL
from security import validate_mercadopago_webhook
from services.mercadopago import MercadoPagoClient
from services.payment_service import PaymentService, OUTCOME_DUPLICATE, notification_payment_id
from services.webhook_service import WebhookService
from schemas import WebhookValidationResult

router = APIRouter(prefix="/api/payments/mp")
logger = structlog.get_logger("webhook")

# Dependency Injection
def get_mercadopago(request: Request) -> MercadoPagoClient:
    return request.app.state.mercadopago


@router.get("/webhook")
async def verify_webhook_endpoint():
    """Mercado Pago pings the URL with GET when it is configured."""
    return {"status": "ok"}


# Mercado Pago retries anything that is not a 2xx, so every branch answers 200
# and reports the outcome in the body instead.
@router.post(
    "/webhook",
    dependencies=[Depends(RateLimiter(times=120, minutes=1))]
)
async def mercadopago_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    mercadopago: MercadoPagoClient = Depends(get_mercadopago),
):
    try:
        body = await request.json()
        if not isinstance(body, dict):
            raise ValueError("body is not an object")
    except Exception as e:
        logger.warning("Webhook with invalid JSON", error=str(e))
        WEBHOOKS_TOTAL.labels(outcome="invalid_json").inc()
        return {"received": True, "processed": False, "reason": "JSON inválido"}

    x_signature = request.headers.get("x-signature")
    x_request_id = request.headers.get("x-request-id")
    data_id = notification_payment_id(body)
    event_type = body.get("type") or body.get("topic") or "unknown"

    logger.info("📨 Mercado Pago webhook",
                event_type=event_type,
                data_id=data_id,
                has_signature=bool(x_signature),
                has_request_id=bool(x_request_id))

    webhooks = WebhookService(db)
    try:
        validation: WebhookValidationResult = validate_mercadopago_webhook(x_signature, x_request_id, data_id)
        webhook_id = await webhooks.record(event_type, data_id, x_request_id, body, validation)
    except Exception as e:
        logger.error("Webhook could not be recorded", data_id=data_id, error=str(e), exc_info=True)
        await db.rollback()
        WEBHOOKS_TOTAL.labels(outcome="error").inc()
        return {"received": True, "processed": False, "reason": "Error registrando webhook"}

    if not validation.is_valid:
        logger.warning("🔒 Webhook rejected", webhook_id=webhook_id, reason=validation.error)
        WEBHOOKS_TOTAL.labels(outcome="invalid_signature").inc()
        return {
            "received": True,
            "processed": False,
            "webhookId": webhook_id,
            "reason": validation.error,
        }

    try:
        outcome = await webhooks.process(webhook_id, body, PaymentService(db, mercadopago))
    except Exception:
        WEBHOOKS_TOTAL.labels(outcome="error").inc()
        return {
            "received": True,
            "processed": False,
            "webhookId": webhook_id,
            "reason": "Error procesando webhook",
        }

    WEBHOOKS_TOTAL.labels(outcome=outcome).inc()
    response = {"received": True, "processed": True, "webhookId": webhook_id, "outcome": outcome}
    if outcome == OUTCOME_DUPLICATE:
        response["duplicate"] = True
    return response
