"""
Webhook Service

Audit log for Mercado Pago callbacks. Every delivery is stored, valid or
not, so failed ones can be replayed (scripts/replay_webhooks.py).
"""

import orjson
import structlog
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import WebhookEvent
from schemas import WebhookValidationResult
from services.payment_service import PaymentService, OUTCOME_IGNORED

logger = structlog.get_logger("webhooks")

STATUS_RECEIVED = "received"
STATUS_INVALID_SIGNATURE = "invalid_signature"
STATUS_PROCESSED = "processed"
STATUS_IGNORED = "ignored"
STATUS_FAILED = "failed"


class WebhookService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        event_type: str,
        external_id: Optional[str],
        request_id: Optional[str],
        payload: Dict[str, Any],
        validation: WebhookValidationResult,
    ) -> int:
        """Store the delivery and return its id."""
        event = WebhookEvent(
            event_type=event_type or "unknown",
            external_id=external_id or None,
            request_id=request_id,
            payload=orjson.dumps(payload).decode("utf-8"),
            signature_valid=validation.is_valid,
            status=STATUS_RECEIVED if validation.is_valid else STATUS_INVALID_SIGNATURE,
            error=validation.error,
        )
        self.db.add(event)
        await self.db.commit()

        logger.info("Webhook recorded",
                    webhook_id=event.id,
                    event_type=event_type,
                    external_id=external_id,
                    valid=validation.is_valid)
        return event.id

    async def mark(self, webhook_id: int, status: str, error: Optional[str] = None):
        await self.db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == webhook_id)
            .values(status=status, error=error, processed_at=datetime.utcnow())
        )
        await self.db.commit()

    async def process(self, webhook_id: int, body: Dict[str, Any], payments: PaymentService) -> str:
        """
        Run the payment side of a verified webhook and keep the audit row in
        sync. Processing errors are recorded and re-raised.
        """
        try:
            outcome = await payments.process_payment_notification(body)
        except Exception as e:
            await self.db.rollback()
            await self.mark(webhook_id, STATUS_FAILED, str(e)[:500])
            logger.error("Webhook processing failed", webhook_id=webhook_id, error=str(e))
            raise

        status = STATUS_IGNORED if outcome == OUTCOME_IGNORED else STATUS_PROCESSED
        await self.mark(webhook_id, status)

        logger.info("Webhook processed", webhook_id=webhook_id, outcome=outcome)
        return outcome

    async def list_failed(self, limit: int = 50) -> List[WebhookEvent]:
        result = await self.db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.status == STATUS_FAILED)
            .order_by(WebhookEvent.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
