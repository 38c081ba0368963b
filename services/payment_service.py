"""
Payment Service

Credit package purchases paid through Mercado Pago:
1. register pending purchase + checkout preference
2. payment notification -> confirm (credit once) or fail
"""

import structlog
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from config import CREDIT_PACKAGES
from errors import DuplicatePaymentError, NotFoundError, PaymentProviderError, ValidationError
from models import CreditPurchase
from services.credit_service import CreditLedger
from services.mercadopago import MercadoPagoClient

logger = structlog.get_logger("payments")

# Notification outcomes
OUTCOME_CREDITED = "credited"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_REJECTED = "rejected"
OUTCOME_IGNORED = "ignored"

FAILED_PAYMENT_STATUSES = ("rejected", "cancelled", "refunded", "charged_back")


def notification_payment_id(body: Dict[str, Any]) -> Optional[str]:
    """
    Payment id of a notification. Current webhooks carry it in data.id; the
    top-level id is the notification's own id except in the legacy
    `topic` format, where it is the payment id.
    """
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    payment_id = data.get("id")
    if payment_id is None and "type" not in body and body.get("topic"):
        payment_id = body.get("id")
    return str(payment_id) if payment_id not in (None, "") else None


class PaymentService:

    def __init__(self, db: AsyncSession, mercadopago: Optional[MercadoPagoClient] = None):
        self.db = db
        self.mp = mercadopago
        self.ledger = CreditLedger(db)

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    async def register_purchase(
        self,
        provider_id: int,
        package_id: str,
        method: str = "mercadopago"
    ) -> CreditPurchase:
        package = CREDIT_PACKAGES.get(package_id)
        if package is None:
            raise ValidationError("Paquete de créditos inválido")

        purchase = CreditPurchase(
            provider_id=provider_id,
            package_id=package_id,
            credits=package["credits"],
            amount=Decimal(package["price"]),
            payment_method=method,
            status="pending",
        )
        self.db.add(purchase)
        await self.db.commit()

        logger.info("Purchase registered",
                    purchase_id=purchase.id,
                    provider_id=provider_id,
                    package=package_id)
        return purchase

    async def create_preference(self, provider_id: int, package_id: str) -> Dict[str, Any]:
        purchase = await self.register_purchase(provider_id, package_id)
        purchase_id = purchase.id

        try:
            preference = await self.mp.create_preference(purchase, CREDIT_PACKAGES[package_id])
        except PaymentProviderError:
            await self.fail_purchase(purchase_id)
            raise

        return {"init_point": preference["init_point"], "purchase_id": purchase_id}

    # =========================================================================
    # CONFIRMATION
    # =========================================================================

    async def confirm_purchase(self, purchase_id: int, payment_id: Optional[str] = None) -> bool:
        """
        Credit the purchase to its provider.

        Returns False when this purchase or payment was already credited;
        nothing is written in that case.
        """
        purchase = await self.db.get(CreditPurchase, purchase_id)
        if purchase is None:
            raise NotFoundError("Compra no encontrada")

        provider_id = purchase.provider_id
        credits = purchase.credits

        try:
            await self.ledger.add_credits(
                provider_id,
                credits,
                purchase_id=purchase_id,
                external_payment_id=payment_id,
            )
            await self.db.commit()
        except DuplicatePaymentError:
            await self.db.rollback()
            logger.info("Purchase already credited", purchase_id=purchase_id, payment_id=payment_id)
            return False

        logger.info("Purchase confirmed",
                    purchase_id=purchase_id,
                    provider_id=provider_id,
                    credits=credits)
        return True

    async def fail_purchase(self, purchase_id: int):
        # A completed purchase never goes back
        await self.db.execute(
            update(CreditPurchase)
            .where(CreditPurchase.id == purchase_id, CreditPurchase.status == "pending")
            .values(status="failed", updated_at=datetime.utcnow())
        )
        await self.db.commit()
        logger.info("Purchase failed", purchase_id=purchase_id)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def process_payment_notification(self, body: Dict[str, Any]) -> str:
        """Handle a verified Mercado Pago notification body."""
        event_type = body.get("type") or body.get("topic")
        if event_type != "payment":
            return OUTCOME_IGNORED

        payment_id = notification_payment_id(body)
        if not payment_id:
            return OUTCOME_IGNORED

        payment = await self.mp.get_payment(payment_id)

        purchase_id = self._resolve_purchase_id(payment)
        if purchase_id is None:
            logger.warning("Payment without purchase reference", payment_id=payment_id)
            return OUTCOME_IGNORED

        status = payment.get("status")
        log = logger.bind(payment_id=payment_id, purchase_id=purchase_id, status=status)

        if status == "approved":
            credited = await self.confirm_purchase(purchase_id, payment_id)
            return OUTCOME_CREDITED if credited else OUTCOME_DUPLICATE

        if status in FAILED_PAYMENT_STATUSES:
            await self.fail_purchase(purchase_id)
            log.info("Payment not approved")
            return OUTCOME_REJECTED

        log.info("Payment still in progress")
        return OUTCOME_IGNORED

    def _resolve_purchase_id(self, payment: Dict[str, Any]) -> Optional[int]:
        """Purchase id travels as the first item id, external_reference as fallback."""
        items = (payment.get("additional_info") or {}).get("items") or []
        candidates = [items[0].get("id") if items else None, payment.get("external_reference")]

        for raw in candidates:
            try:
                return int(raw)
            except (TypeError, ValueError):
                continue
        return None
