import pytest
from sqlalchemy import func, select

from errors import ForbiddenError, InsufficientCreditsError, NotFoundError, ValidationError
from models import Conversation, Message, ProviderCredits
from services.conversation_service import ConversationService


async def count(session_factory, model) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model))


@pytest.mark.asyncio
async def test_start_conversation_costs_one_credit(db_session, session_factory, factory):
    provider, profile = await factory.provider(credits=3)
    customer = await factory.user("cliente@test.com")
    service = ConversationService(db_session)

    conversation, created = await service.start_conversation(provider, customer.id, 77)

    assert created is True
    assert conversation.customer_id == customer.id
    assert conversation.provider_id == provider.id
    assert conversation.customer_unread_count == 0

    async with session_factory() as db:
        balance = await db.get(ProviderCredits, profile.id)
    assert balance.current_credits == 2
    assert balance.total_used == 1


@pytest.mark.asyncio
async def test_restart_returns_existing_for_free(db_session, session_factory, factory):
    provider, profile = await factory.provider(credits=3)
    customer = await factory.user("cliente@test.com")
    service = ConversationService(db_session)

    first, _ = await service.start_conversation(provider, customer.id, 77)
    again, created = await service.start_conversation(provider, customer.id, 77)

    assert created is False
    assert again.id == first.id
    assert await count(session_factory, Conversation) == 1
    async with session_factory() as db:
        assert (await db.get(ProviderCredits, profile.id)).current_credits == 2


@pytest.mark.asyncio
async def test_start_without_credits_creates_nothing(db_session, session_factory, factory):
    provider, profile = await factory.provider(credits=0)
    customer = await factory.user("cliente@test.com")

    with pytest.raises(InsufficientCreditsError):
        await ConversationService(db_session).start_conversation(provider, customer.id, 77)
    await db_session.rollback()

    assert await count(session_factory, Conversation) == 0


@pytest.mark.asyncio
async def test_only_providers_start_conversations(db_session, factory):
    customer = await factory.user("cliente@test.com")
    other = await factory.user("otro@test.com")

    with pytest.raises(ForbiddenError):
        await ConversationService(db_session).start_conversation(customer, other.id, 1)


@pytest.mark.asyncio
async def test_start_requires_parameters(db_session, factory):
    provider, _ = await factory.provider()

    with pytest.raises(ValidationError, match="Faltan parámetros"):
        await ConversationService(db_session).start_conversation(provider, None, 1)


@pytest.mark.asyncio
async def test_start_with_unknown_customer(db_session, factory):
    provider, _ = await factory.provider()
    other_provider, _ = await factory.provider(email="otro@test.com")

    service = ConversationService(db_session)
    with pytest.raises(NotFoundError, match="Cliente no encontrado"):
        await service.start_conversation(provider, 9999, 1)
    with pytest.raises(NotFoundError):
        await service.start_conversation(provider, other_provider.id, 1)


@pytest.mark.asyncio
async def test_party_checks(db_session, factory):
    provider, _ = await factory.provider()
    customer = await factory.user("cliente@test.com")
    stranger = await factory.user("extrano@test.com")
    service = ConversationService(db_session)
    conversation, _ = await service.start_conversation(provider, customer.id, 5)

    assert (await service.get_for_party(conversation.id, customer.id)).id == conversation.id
    with pytest.raises(ForbiddenError):
        await service.get_for_party(conversation.id, stranger.id)
    with pytest.raises(NotFoundError):
        await service.get_for_party(conversation.id + 100, customer.id)
    with pytest.raises(ForbiddenError):
        await service.list_messages(conversation.id, stranger.id)


@pytest.mark.asyncio
async def test_lookup_by_service_request(db_session, factory):
    provider, _ = await factory.provider()
    customer = await factory.user("cliente@test.com")
    service = ConversationService(db_session)
    conversation, _ = await service.start_conversation(provider, customer.id, 88)

    assert (await service.get_by_service_request(88, provider.id)).id == conversation.id
    with pytest.raises(NotFoundError):
        await service.get_by_service_request(89, provider.id)


@pytest.mark.asyncio
async def test_send_increments_only_recipient_counter(db_session, session_factory, factory):
    provider, _ = await factory.provider()
    customer = await factory.user("cliente@test.com")
    service = ConversationService(db_session)
    conversation, _ = await service.start_conversation(provider, customer.id, 1)

    await service.send_message(conversation.id, customer.id, "Hola")
    await service.send_message(conversation.id, customer.id, "¿Está disponible?")
    await service.send_message(conversation.id, provider.id, "Sí, mañana")

    async with session_factory() as db:
        stored = await db.get(Conversation, conversation.id)
    assert stored.provider_unread_count == 2
    assert stored.customer_unread_count == 1

    messages = await service.list_messages(conversation.id, provider.id)
    assert [m.content for m in messages] == ["Hola", "¿Está disponible?", "Sí, mañana"]
    assert all(m.is_read is False for m in messages)


@pytest.mark.asyncio
async def test_stranger_cannot_send(db_session, session_factory, factory):
    provider, _ = await factory.provider()
    customer = await factory.user("cliente@test.com")
    stranger = await factory.user("extrano@test.com")
    service = ConversationService(db_session)
    conversation, _ = await service.start_conversation(provider, customer.id, 1)

    with pytest.raises(ForbiddenError):
        await service.send_message(conversation.id, stranger.id, "spam")
    assert await count(session_factory, Message) == 0


@pytest.mark.asyncio
async def test_mark_as_read_touches_only_incoming(db_session, session_factory, factory):
    provider, _ = await factory.provider()
    customer = await factory.user("cliente@test.com")
    service = ConversationService(db_session)
    conversation, _ = await service.start_conversation(provider, customer.id, 1)

    incoming, _ = await service.send_message(conversation.id, customer.id, "Hola")
    own, _ = await service.send_message(conversation.id, provider.id, "Buenas")

    marked, _ = await service.mark_as_read(conversation.id, provider.id, [incoming.id, own.id])

    assert marked == [incoming.id]
    async with session_factory() as db:
        stored = await db.get(Conversation, conversation.id)
        own_stored = await db.get(Message, own.id)
        incoming_stored = await db.get(Message, incoming.id)
    assert stored.provider_unread_count == 0
    assert stored.customer_unread_count == 1
    assert incoming_stored.is_read is True
    assert incoming_stored.read_at is not None
    assert own_stored.is_read is False


@pytest.mark.asyncio
async def test_list_for_user_by_role(db_session, factory):
    provider, _ = await factory.provider()
    customer_a = await factory.user("a@test.com")
    customer_b = await factory.user("b@test.com")
    service = ConversationService(db_session)
    await service.start_conversation(provider, customer_a.id, 1)
    await service.start_conversation(provider, customer_b.id, 2)

    assert len(await service.list_for_user(provider)) == 2
    mine = await service.list_for_user(customer_a)
    assert [c.customer_id for c in mine] == [customer_a.id]


@pytest.mark.asyncio
async def test_message_pagination(db_session, factory):
    provider, _ = await factory.provider()
    customer = await factory.user("cliente@test.com")
    service = ConversationService(db_session)
    conversation, _ = await service.start_conversation(provider, customer.id, 1)
    for i in range(5):
        await service.send_message(conversation.id, customer.id, f"m{i}")

    page = await service.list_messages(conversation.id, customer.id, limit=2, offset=2)
    assert [m.content for m in page] == ["m2", "m3"]
