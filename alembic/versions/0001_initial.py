"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="customer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "service_providers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("business_name", sa.String(200)),
        sa.Column("city", sa.String(100)),
        sa.Column("phone_number", sa.String(50)),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_service_providers_user_id", "service_providers", ["user_id"], unique=True)

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("service_request_id", sa.Integer()),
        sa.Column("last_message_at", sa.DateTime()),
        sa.Column("customer_unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("provider_unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint("customer_id", "provider_id", "service_request_id", name="uq_conversation_parties"),
    )
    op.create_index("ix_conversations_customer_id", "conversations", ["customer_id"])
    op.create_index("ix_conversations_provider_id", "conversations", ["provider_id"])
    op.create_index("ix_conversations_service_request_id", "conversations", ["service_request_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.String(1024), nullable=False),
        sa.Column("message_type", sa.String(20), nullable=False, server_default="text"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])

    op.create_table(
        "provider_credits",
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("service_providers.id"), primary_key=True),
        sa.Column("current_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_purchase_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.CheckConstraint("current_credits >= 0", name="ck_provider_credits_non_negative"),
    )

    op.create_table(
        "credit_purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("service_providers.id"), nullable=False),
        sa.Column("package_id", sa.String(32), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False, server_default="mercadopago"),
        sa.Column("mercadopago_payment_id", sa.String(255)),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_credit_purchases_provider_id", "credit_purchases", ["provider_id"])

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("service_providers.id"), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("credit_purchases.id")),
        sa.Column("external_payment_id", sa.String(255), unique=True),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_credit_transactions_provider_id", "credit_transactions", ["provider_id"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False, server_default="unknown"),
        sa.Column("external_id", sa.String(255)),
        sa.Column("request_id", sa.String(255)),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("signature_valid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("error", sa.Text()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("processed_at", sa.DateTime()),
    )
    op.create_index("ix_webhook_events_external_id", "webhook_events", ["external_id"])


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("credit_transactions")
    op.drop_table("credit_purchases")
    op.drop_table("provider_credits")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("service_providers")
    op.drop_table("users")
