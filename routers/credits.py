from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config import CREDIT_PACKAGES
from database import get_db
from models import User
from schemas import BalanceOut, CreditPackageOut, CreditTransactionOut
from security import require_provider
from services.credit_service import CreditLedger

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("/balance", response_model=BalanceOut)
async def get_balance(user: User = Depends(require_provider), db: AsyncSession = Depends(get_db)):
    ledger = CreditLedger(db)
    provider = await ledger.get_provider_for_user(user.id)
    credits = await ledger.get_balance(provider.id)
    return BalanceOut(
        current_credits=credits.current_credits,
        total_purchased=credits.total_purchased,
        total_used=credits.total_used,
        last_purchase=credits.last_purchase_at,
    )


@router.get("/packages", response_model=List[CreditPackageOut])
async def list_packages():
    return [
        CreditPackageOut(
            id=package_id,
            name=package["name"],
            credits=package["credits"],
            price=package["price"],
            price_per_credit=package["price"] // package["credits"],
            popular=package["popular"],
            savings=package["savings"],
        )
        for package_id, package in CREDIT_PACKAGES.items()
    ]


@router.get("/transactions", response_model=List[CreditTransactionOut])
async def list_transactions(
    limit: int = 50,
    user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    ledger = CreditLedger(db)
    provider = await ledger.get_provider_for_user(user.id)
    return await ledger.list_transactions(provider.id, max(1, min(limit, 200)))
