import asyncio
import orjson
import sys
import os
import structlog

# Root folder on the path so config/models import when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import get_settings
from database import AsyncSessionLocal
from services.mercadopago import MercadoPagoClient
from services.payment_service import PaymentService
from services.webhook_service import WebhookService

logger = structlog.get_logger("replay_webhooks")
settings = get_settings()


async def replay_failed_webhooks(dry_run: bool = False, limit: int = 50, session_factory=AsyncSessionLocal,
                                 mercadopago: MercadoPagoClient = None) -> int:
    """
    Re-run payment processing for webhooks stored with status `failed`.

    Signatures are not checked again: only deliveries that passed
    validation can reach the failed state. Crediting stays idempotent, so a
    payment credited in the meantime comes back as a duplicate.

    Returns the number of events that processed successfully.
    """
    print(f"🔌 Database: {settings.DATABASE_URL.rsplit('@', 1)[-1]}")
    mp = mercadopago or MercadoPagoClient()
    recovered = 0

    try:
        async with session_factory() as db:
            webhooks = WebhookService(db)
            events = await webhooks.list_failed(limit)

            if not events:
                print("✅ No failed webhooks to replay.")
                return 0

            print(f"⚠️ Found {len(events)} failed webhooks.")
            if dry_run:
                print("👀 DRY RUN MODE: nothing will be reprocessed.")

            # A failed replay rolls the session back and expires loaded rows
            pending = [(e.id, e.event_type, e.external_id, e.error, e.payload) for e in events]

            for event_id, event_type, external_id, error, payload in pending:
                print(f"\n📩 Webhook #{event_id} ({event_type})")
                print(f"   Payment: {external_id}")
                print(f"   Error: {error}")

                if dry_run:
                    continue

                try:
                    body = orjson.loads(payload)
                    outcome = await webhooks.process(event_id, body, PaymentService(db, mp))
                except Exception as e:
                    logger.warning("Replay failed", webhook_id=event_id, error=str(e))
                    print(f"   ❌ Still failing: {e}")
                    continue

                print(f"   ✅ Replayed, outcome: {outcome}")
                recovered += 1

        if not dry_run:
            print(f"\n🎉 Recovered {recovered} webhooks.")
        return recovered

    finally:
        if mercadopago is None:
            await mp.close()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Replay failed Mercado Pago webhooks")
    parser.add_argument("--dry-run", action="store_true", help="Only list failed webhooks")
    parser.add_argument("--limit", type=int, default=50)
    args = parser.parse_args()

    asyncio.run(replay_failed_webhooks(dry_run=args.dry_run, limit=args.limit))
