from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models import User
from schemas import ConversationOut, MessageOut, StartConversationRequest
from security import get_current_user
from services.conversation_service import ConversationService

router = APIRouter(prefix="/api/conversations", tags=["conversations"])
messages_router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.get("", response_model=List[ConversationOut])
async def list_conversations(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await ConversationService(db).list_for_user(user)


@router.post("", response_model=ConversationOut)
async def start_conversation(
    data: StartConversationRequest,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation, created = await ConversationService(db).start_conversation(
        user, data.customer_id, data.service_request_id
    )
    response.status_code = 201 if created else 200
    return conversation


@router.get("/request/{service_request_id}", response_model=ConversationOut)
async def get_by_service_request(
    service_request_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ConversationService(db).get_by_service_request(service_request_id, user.id)


@router.get("/{conversation_id}", response_model=ConversationOut)
async def get_conversation(
    conversation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ConversationService(db).get_for_party(conversation_id, user.id)


@messages_router.get("/{conversation_id}", response_model=List[MessageOut])
async def list_messages(
    conversation_id: int,
    limit: int = 50,
    offset: int = 0,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ConversationService(db).list_messages(conversation_id, user.id, limit, offset)
