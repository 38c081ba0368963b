"""
Conversation Service

Shared by the HTTP routes and the socket gateway:
1. Party checks (NotFoundError / ForbiddenError, never sentinels)
2. Message send: insert + last_message_at + other party's unread counter, one commit
3. Read receipts: mark messages, reset own counter
4. Conversation start: one conversation per (customer, provider, request), one credit
"""

import structlog
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ForbiddenError, NotFoundError, ValidationError
from models import Conversation, Message, User
from services.credit_service import CreditLedger

logger = structlog.get_logger("conversations")

MAX_PAGE_SIZE = 200


class ConversationService:

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def list_for_user(self, user: User) -> List[Conversation]:
        if user.role == "provider":
            criteria = Conversation.provider_id == user.id
        elif user.role == "customer":
            criteria = Conversation.customer_id == user.id
        else:
            criteria = or_(Conversation.customer_id == user.id, Conversation.provider_id == user.id)

        result = await self.db.execute(
            select(Conversation)
            .where(criteria)
            .order_by(Conversation.last_message_at.desc().nulls_last(), Conversation.id.desc())
        )
        return list(result.scalars().all())

    async def get_for_party(self, conversation_id: int, user_id: int) -> Conversation:
        conversation = await self.db.get(Conversation, conversation_id)
        return self._check_party(conversation, user_id)

    async def get_by_service_request(self, service_request_id: int, user_id: int) -> Conversation:
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.service_request_id == service_request_id)
            .order_by(Conversation.id.asc())
        )
        conversations = list(result.scalars().all())
        if not conversations:
            raise NotFoundError("Conversación no encontrada")

        # Several providers may answer the same request; prefer the caller's own
        for conversation in conversations:
            if conversation.has_party(user_id):
                return conversation
        raise ForbiddenError("No tienes acceso a esta conversación")

    def _check_party(self, conversation: Optional[Conversation], user_id: int) -> Conversation:
        if conversation is None:
            raise NotFoundError("Conversación no encontrada")
        if not conversation.has_party(user_id):
            raise ForbiddenError("No tienes acceso a esta conversación")
        return conversation

    async def list_messages(
        self,
        conversation_id: int,
        user_id: int,
        limit: int = 50,
        offset: int = 0
    ) -> List[Message]:
        await self.get_for_party(conversation_id, user_id)

        limit = max(1, min(limit, MAX_PAGE_SIZE))
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .limit(limit)
            .offset(max(0, offset))
        )
        return list(result.scalars().all())

    # =========================================================================
    # START
    # =========================================================================

    async def find_existing(
        self,
        customer_id: int,
        provider_id: int,
        service_request_id: Optional[int]
    ) -> Optional[Conversation]:
        request_criteria = (
            Conversation.service_request_id.is_(None)
            if service_request_id is None
            else Conversation.service_request_id == service_request_id
        )
        result = await self.db.execute(
            select(Conversation).where(
                Conversation.customer_id == customer_id,
                Conversation.provider_id == provider_id,
                request_criteria,
            )
        )
        return result.scalars().first()

    async def start_conversation(
        self,
        provider_user: User,
        customer_id: Optional[int],
        service_request_id: Optional[int],
    ) -> Tuple[Conversation, bool]:
        """
        Open (or reopen) the conversation between a provider and a customer.

        Returns (conversation, created). A new conversation costs the
        provider one credit, charged in the same transaction; an existing
        one is returned for free.
        """
        if provider_user.role != "provider":
            raise ForbiddenError("Solo proveedores pueden iniciar conversaciones")
        if not customer_id or not service_request_id:
            raise ValidationError("Faltan parámetros")

        existing = await self.find_existing(customer_id, provider_user.id, service_request_id)
        if existing is not None:
            return existing, False

        customer = await self.db.get(User, customer_id)
        if customer is None or customer.role != "customer":
            raise NotFoundError("Cliente no encontrado")

        ledger = CreditLedger(self.db)
        profile = await ledger.get_provider_for_user(provider_user.id)
        await ledger.consume_credit(profile.id, 1)

        conversation = Conversation(
            customer_id=customer_id,
            provider_id=provider_user.id,
            service_request_id=service_request_id,
            last_message_at=datetime.utcnow(),
            customer_unread_count=0,
            provider_unread_count=0,
        )
        self.db.add(conversation)

        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race against an identical start; the credit is rolled back too
            await self.db.rollback()
            existing = await self.find_existing(customer_id, provider_user.id, service_request_id)
            if existing is None:
                raise
            return existing, False

        logger.info("Conversation started",
                    conversation_id=conversation.id,
                    provider_id=provider_user.id,
                    customer_id=customer_id)
        return conversation, True

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def send_message(
        self,
        conversation_id: int,
        sender_id: int,
        content: str,
        message_type: str = "text",
    ) -> Tuple[Message, Conversation]:
        conversation = await self.get_for_party(conversation_id, sender_id)

        now = datetime.utcnow()
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type or "text",
            is_read=False,
            created_at=now,
        )
        self.db.add(message)

        unread = (
            Conversation.provider_unread_count
            if sender_id == conversation.customer_id
            else Conversation.customer_unread_count
        )
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values({unread: unread + 1, Conversation.last_message_at: now})
        )
        await self.db.commit()

        logger.info("Message stored", conversation_id=conversation_id, message_id=message.id)
        return message, conversation

    async def mark_as_read(
        self,
        conversation_id: int,
        reader_id: int,
        message_ids: List[int],
    ) -> Tuple[List[int], Conversation]:
        """Mark the reader's incoming messages read and zero the reader's counter."""
        conversation = await self.get_for_party(conversation_id, reader_id)

        marked: List[int] = []
        if message_ids:
            result = await self.db.execute(
                update(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.id.in_(message_ids),
                    Message.sender_id != reader_id,
                    Message.is_read.is_(False),
                )
                .values(is_read=True, read_at=datetime.utcnow())
                .returning(Message.id)
            )
            marked = list(result.scalars().all())

        own_counter = (
            Conversation.customer_unread_count
            if reader_id == conversation.customer_id
            else Conversation.provider_unread_count
        )
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values({own_counter: 0})
        )
        await self.db.commit()

        return marked, conversation
