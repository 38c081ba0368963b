from prometheus_client import Counter

WEBHOOKS_TOTAL = Counter("mp_webhooks_total", "Mercado Pago webhooks received", ["outcome"])
CHAT_MESSAGES = Counter("chat_messages_total", "Chat messages persisted and broadcast")
CREDITS_CONSUMED = Counter("provider_credits_consumed_total", "Credits spent by providers")
CREDITS_ADDED = Counter("provider_credits_added_total", "Credits granted to providers", ["kind"])
