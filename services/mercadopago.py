"""
Mercado Pago API client

1. Checkout preference creation (credit package purchase)
2. Payment lookup (webhook follow-up)
3. Retry on timeouts / 5xx, typed error on everything else
"""

import uuid
import httpx
import structlog
from typing import Any, Dict, Optional

from config import get_settings
from errors import PaymentProviderError
from models import CreditPurchase

logger = structlog.get_logger("mercadopago")
settings = get_settings()


class MercadoPagoClient:
    """Thin async wrapper around the Mercado Pago REST API."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 2,
    ):
        self.base_url = (base_url or settings.MP_API_URL).rstrip("/")
        self.access_token = access_token if access_token is not None else settings.MP_ACCESS_TOKEN
        self.max_retries = max_retries
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(15.0, connect=5.0),
        )

        if not self.access_token:
            logger.warning("MP_ACCESS_TOKEN not configured")

    # =========================================================================
    # CONVENIENCE METHODS
    # =========================================================================

    async def create_preference(self, purchase: CreditPurchase, package: Dict[str, Any]) -> Dict[str, Any]:
        """Create a checkout preference for a pending purchase."""
        body = {
            "items": [
                {
                    "id": str(purchase.id),
                    "title": f"Compra de {purchase.credits} créditos",
                    "description": f"Paquete {package['name']}",
                    "quantity": 1,
                    "unit_price": float(purchase.amount),
                    "currency_id": "ARS",
                }
            ],
            "external_reference": str(purchase.id),
            "back_urls": settings.back_urls,
            "auto_return": "approved",
        }
        if settings.MP_WEBHOOK_URL:
            body["notification_url"] = settings.MP_WEBHOOK_URL

        data = await self._request(
            "POST",
            "/checkout/preferences",
            json=body,
            idempotency_key=f"purchase-{purchase.id}",
        )

        if not data.get("init_point"):
            logger.error("Preference without init_point", purchase_id=purchase.id)
            raise PaymentProviderError("No se pudo crear la preferencia de pago")

        logger.info("Preference created", purchase_id=purchase.id, preference_id=data.get("id"))
        return data

    async def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/v1/payments/{payment_id}")

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Execute HTTP request with retry."""
        headers = self._headers(idempotency_key or (str(uuid.uuid4()) if method == "POST" else None))

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(method, path, json=json, headers=headers)
            except httpx.TimeoutException:
                if attempt < self.max_retries:
                    logger.warning("MP timeout, retrying", path=path, attempt=attempt + 1)
                    continue
                raise PaymentProviderError("Timeout comunicándose con Mercado Pago")
            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    continue
                logger.error("MP network error", path=path, error=str(e))
                raise PaymentProviderError("No se pudo contactar a Mercado Pago")

            if response.status_code >= 500 and attempt < self.max_retries:
                logger.warning("MP server error, retrying", status=response.status_code, path=path)
                continue

            if response.status_code == 404:
                raise PaymentProviderError("Recurso no encontrado en Mercado Pago")

            if response.status_code >= 400:
                logger.error(f"HTTP {response.status_code}", path=path, body=response.text[:200])
                raise PaymentProviderError(f"Mercado Pago respondió {response.status_code}")

            try:
                return response.json()
            except ValueError:
                raise PaymentProviderError("Respuesta inválida de Mercado Pago")

        raise PaymentProviderError("Max retries exceeded")

    async def close(self):
        """Cleanup."""
        if self.client:
            await self.client.aclose()
