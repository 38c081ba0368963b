"""
Database Models
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, Numeric, ForeignKey,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class User(Base):
    """Marketplace account. Role decides which side of a conversation it sits on."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False, default="customer")  # customer | provider | admin
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.id} {self.role}>"


class ServiceProvider(Base):
    """Professional profile attached to a provider user."""
    __tablename__ = "service_providers"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    business_name = Column(String(200), nullable=True)
    city = Column(String(100), nullable=True)
    phone_number = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Conversation(Base):
    """
    Thread between one customer and one provider (both users.id),
    optionally tied to a service request.
    """
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("customer_id", "provider_id", "service_request_id",
                         name="uq_conversation_parties"),
    )

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    service_request_id = Column(Integer, nullable=True, index=True)
    last_message_at = Column(DateTime, nullable=True)
    customer_unread_count = Column(Integer, nullable=False, default=0)
    provider_unread_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    def has_party(self, user_id: int) -> bool:
        return user_id in (self.customer_id, self.provider_id)

    def other_party(self, user_id: int) -> int:
        return self.provider_id if user_id == self.customer_id else self.customer_id


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(String(1024), nullable=False)
    message_type = Column(String(20), nullable=False, default="text")
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class ProviderCredits(Base):
    """
    Balance row, one per provider.

    current_credits == total_purchased - total_used must hold after every write.
    """
    __tablename__ = "provider_credits"
    __table_args__ = (
        CheckConstraint("current_credits >= 0", name="ck_provider_credits_non_negative"),
    )

    provider_id = Column(Integer, ForeignKey("service_providers.id"), primary_key=True)
    current_credits = Column(Integer, nullable=False, default=0)
    total_purchased = Column(Integer, nullable=False, default=0)
    total_used = Column(Integer, nullable=False, default=0)
    last_purchase_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CreditPurchase(Base):
    __tablename__ = "credit_purchases"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("service_providers.id"), nullable=False, index=True)
    package_id = Column(String(32), nullable=False)
    credits = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(50), nullable=False, default="mercadopago")
    mercadopago_payment_id = Column(String(255), nullable=True)
    status = Column(String(32), nullable=False, default="pending")  # pending | completed | failed
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CreditTransaction(Base):
    """
    Ledger history. external_payment_id is unique: a payment can credit
    a balance at most once.
    """
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("service_providers.id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)  # purchase | bonus | consume
    amount = Column(Integer, nullable=False)  # signed
    balance_after = Column(Integer, nullable=False)
    purchase_id = Column(Integer, ForeignKey("credit_purchases.id"), nullable=True)
    external_payment_id = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class WebhookEvent(Base):
    """Audit log of every payment provider callback, valid or not."""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(String(64), nullable=False, default="unknown")
    external_id = Column(String(255), nullable=True, index=True)
    request_id = Column(String(255), nullable=True)
    payload = Column(Text, nullable=False)
    signature_valid = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="received")
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
