"""
Credit Ledger

Per-provider credit balance:
1. Every balance change is ONE statement with RETURNING (no read-modify-write)
2. Purchase confirmation is a compare-and-set on the purchase status
3. A payment id can credit a balance at most once (unique ledger key)

Methods never commit. The caller owns the transaction so that balance,
purchase status and ledger entry land together or not at all.
"""

import structlog
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import (
    DuplicatePaymentError, InsufficientCreditsError, NotFoundError, ValidationError,
)
from metrics import CREDITS_ADDED, CREDITS_CONSUMED
from models import CreditPurchase, CreditTransaction, ProviderCredits, ServiceProvider

logger = structlog.get_logger("credit_ledger")


def _dialect_insert(db: AsyncSession):
    """INSERT construct with ON CONFLICT support for the session's database."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


class CreditLedger:
    """Balance + history for provider credits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # READS
    # =========================================================================

    async def get_provider_for_user(self, user_id: int) -> ServiceProvider:
        result = await self.db.execute(
            select(ServiceProvider).where(ServiceProvider.user_id == user_id)
        )
        provider = result.scalars().first()
        if provider is None:
            raise NotFoundError("Proveedor no encontrado")
        return provider

    async def get_balance(self, provider_id: int) -> ProviderCredits:
        balance = await self.db.get(ProviderCredits, provider_id)
        if balance is None:
            raise NotFoundError("Registro de créditos no encontrado")
        return balance

    async def list_transactions(self, provider_id: int, limit: int = 50) -> List[CreditTransaction]:
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.provider_id == provider_id)
            .order_by(CreditTransaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # =========================================================================
    # WRITES
    # =========================================================================

    async def add_credits(
        self,
        provider_id: int,
        amount: int,
        purchase_id: Optional[int] = None,
        external_payment_id: Optional[str] = None,
        kind: str = "purchase",
    ) -> ProviderCredits:
        """
        Increase a provider balance.

        With purchase_id the purchase is claimed first (pending/failed ->
        completed); an already completed purchase raises
        DuplicatePaymentError and the balance is not touched. The same
        happens when external_payment_id was already credited.
        """
        if not isinstance(amount, int) or amount <= 0:
            raise ValidationError("La cantidad de créditos debe ser positiva")

        now = datetime.utcnow()

        if purchase_id is not None:
            await self._claim_purchase(purchase_id, external_payment_id, now)

        balance_row = {
            "provider_id": provider_id,
            "current_credits": amount,
            "total_purchased": amount,
            "total_used": 0,
            "last_purchase_at": now if kind == "purchase" else None,
            "updated_at": now,
        }
        # Increments the row, or creates it on the first credit, in one statement
        on_conflict = {
            "current_credits": ProviderCredits.current_credits + amount,
            "total_purchased": ProviderCredits.total_purchased + amount,
            "updated_at": now,
        }
        if kind == "purchase":
            on_conflict["last_purchase_at"] = now

        insert = _dialect_insert(self.db)
        result = await self.db.execute(
            insert(ProviderCredits)
            .values(balance_row)
            .on_conflict_do_update(index_elements=[ProviderCredits.provider_id], set_=on_conflict)
            .returning(ProviderCredits)
            .execution_options(populate_existing=True)
        )
        balance = result.scalars().one()

        self.db.add(CreditTransaction(
            provider_id=provider_id,
            kind=kind,
            amount=amount,
            balance_after=balance.current_credits,
            purchase_id=purchase_id,
            external_payment_id=external_payment_id,
            created_at=now,
        ))

        try:
            await self.db.flush()
        except IntegrityError as e:
            if external_payment_id is None or "external_payment_id" not in str(e.orig):
                raise
            logger.warning("Duplicate credit attempt",
                           provider_id=provider_id,
                           payment_id=external_payment_id)
            raise DuplicatePaymentError() from e

        CREDITS_ADDED.labels(kind=kind).inc(amount)
        logger.info("Credits added",
                    provider_id=provider_id,
                    amount=amount,
                    kind=kind,
                    balance=balance.current_credits)
        return balance

    async def consume_credit(self, provider_id: int, amount: int = 1) -> ProviderCredits:
        """
        Spend credits. Fails with InsufficientCreditsError, leaving the row
        untouched, when the balance is lower than amount.
        """
        if not isinstance(amount, int) or amount <= 0:
            raise ValidationError("La cantidad de créditos debe ser positiva")

        now = datetime.utcnow()
        result = await self.db.execute(
            update(ProviderCredits)
            .where(
                ProviderCredits.provider_id == provider_id,
                ProviderCredits.current_credits >= amount,
            )
            .values({
                ProviderCredits.current_credits: ProviderCredits.current_credits - amount,
                ProviderCredits.total_used: ProviderCredits.total_used + amount,
                ProviderCredits.updated_at: now,
            })
            .returning(ProviderCredits)
            .execution_options(populate_existing=True)
        )
        balance = result.scalars().first()

        if balance is None:
            logger.info("Insufficient credits", provider_id=provider_id, requested=amount)
            raise InsufficientCreditsError("Créditos insuficientes")

        self.db.add(CreditTransaction(
            provider_id=provider_id,
            kind="consume",
            amount=-amount,
            balance_after=balance.current_credits,
            created_at=now,
        ))
        await self.db.flush()

        CREDITS_CONSUMED.inc(amount)
        logger.info("Credits consumed",
                    provider_id=provider_id,
                    amount=amount,
                    balance=balance.current_credits)
        return balance

    async def _claim_purchase(self, purchase_id: int, payment_id: Optional[str], now: datetime):
        values = {CreditPurchase.status: "completed", CreditPurchase.updated_at: now}
        if payment_id:
            values[CreditPurchase.mercadopago_payment_id] = payment_id

        result = await self.db.execute(
            update(CreditPurchase)
            .where(CreditPurchase.id == purchase_id, CreditPurchase.status != "completed")
            .values(values)
            .returning(CreditPurchase.id)
        )
        if result.scalar_one_or_none() is None:
            raise DuplicatePaymentError("Compra ya procesada")
