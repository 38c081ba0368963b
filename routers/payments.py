from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import User
from routers.webhook import get_mercadopago
from schemas import CreatePreferenceRequest, PreferenceOut
from security import require_provider
from services.credit_service import CreditLedger
from services.mercadopago import MercadoPagoClient
from services.payment_service import PaymentService

router = APIRouter(prefix="/api/payments/mp", tags=["payments"])


@router.post("/create", response_model=PreferenceOut)
async def create_preference(
    data: CreatePreferenceRequest,
    user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
    mercadopago: MercadoPagoClient = Depends(get_mercadopago),
):
    provider = await CreditLedger(db).get_provider_for_user(user.id)
    preference = await PaymentService(db, mercadopago).create_preference(provider.id, data.package_id)
    return PreferenceOut(**preference)
