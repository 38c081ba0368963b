"""
Chat Gateway - Socket.IO

Connection lifecycle:
    connect (auth.token) -> room user_<id> -> join_conversation -> room conversation_<id>

Client events: join_conversation, send_message, mark_as_read, typing_start, typing_stop
Server events: new_message, messages_read, user_typing, error

Handlers never raise into the transport: failures go back to the calling
socket as an `error` event carrying the error code ("forbidden", "not_found", ...).
"""

import structlog
import socketio
from pydantic import ValidationError as PayloadError
from typing import Any, Callable, Optional

from database import AsyncSessionLocal
from errors import AuthenticationError, ServiceError
from logger_config import bind_context
from metrics import CHAT_MESSAGES
from schemas import MarkReadPayload, MessageOut, SendMessagePayload
from security import decode_token
from services.conversation_service import ConversationService

logger = structlog.get_logger("chat")


def user_room(user_id: int) -> str:
    return f"user_{user_id}"


def conversation_room(conversation_id: int) -> str:
    return f"conversation_{conversation_id}"


def _conversation_id(data: Any) -> Optional[int]:
    """Events carry the id bare (42) or wrapped ({"conversationId": 42})."""
    if isinstance(data, dict):
        data = data.get("conversationId", data.get("conversation_id"))
    if isinstance(data, bool):
        return None
    try:
        value = int(data)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


class ChatGateway:
    """Registers the chat handlers on a Socket.IO server."""

    def __init__(self, sio: socketio.AsyncServer, session_factory: Callable = AsyncSessionLocal):
        self.sio = sio
        self.session_factory = session_factory
        self._register()

    def _register(self):
        self.sio.on("connect", handler=self.on_connect)
        self.sio.on("disconnect", handler=self.on_disconnect)
        self.sio.on("join_conversation", handler=self.on_join_conversation)
        self.sio.on("send_message", handler=self.on_send_message)
        self.sio.on("mark_as_read", handler=self.on_mark_as_read)
        self.sio.on("typing_start", handler=self.on_typing_start)
        self.sio.on("typing_stop", handler=self.on_typing_stop)

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None):
        bind_context(sid=sid)
        token = auth.get("token") if isinstance(auth, dict) else None

        try:
            claims = decode_token(token)
        except AuthenticationError as e:
            logger.warning("Socket rejected", sid=sid, reason=e.message)
            raise socketio.exceptions.ConnectionRefusedError("Authentication error")

        user_id = claims["userId"]
        await self.sio.save_session(sid, {"user_id": user_id, "role": claims["role"]})
        await self.sio.enter_room(sid, user_room(user_id))

        logger.info("Socket connected", sid=sid, user_id=user_id)

    async def on_disconnect(self, sid: str, *args):
        logger.info("Socket disconnected", sid=sid)

    async def _session(self, sid: str) -> dict:
        session = await self.sio.get_session(sid)
        bind_context(sid=sid, user_id=session.get("user_id"))
        return session

    async def _emit_error(self, sid: str, error: str):
        await self.sio.emit("error", error, to=sid)

    # =========================================================================
    # ROOMS
    # =========================================================================

    async def on_join_conversation(self, sid: str, data: Any):
        session = await self._session(sid)
        conversation_id = _conversation_id(data)
        if conversation_id is None:
            await self._emit_error(sid, "validation")
            return {"ok": False}

        try:
            async with self.session_factory() as db:
                await ConversationService(db).get_for_party(conversation_id, session["user_id"])
        except ServiceError as e:
            logger.info("Join refused", sid=sid, conversation_id=conversation_id, reason=e.code)
            await self._emit_error(sid, e.code)
            return {"ok": False}
        except Exception as e:
            logger.error("Join failed", sid=sid, conversation_id=conversation_id, error=str(e))
            await self._emit_error(sid, "Failed to join conversation")
            return {"ok": False}

        await self.sio.enter_room(sid, conversation_room(conversation_id))
        logger.info("Joined conversation", user_id=session["user_id"], conversation_id=conversation_id)
        return {"ok": True}

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def on_send_message(self, sid: str, data: Any):
        session = await self._session(sid)

        try:
            payload = SendMessagePayload.model_validate(data)
        except PayloadError:
            await self._emit_error(sid, "validation")
            return {"ok": False}

        try:
            async with self.session_factory() as db:
                message, _ = await ConversationService(db).send_message(
                    payload.conversation_id,
                    session["user_id"],
                    payload.content,
                    payload.message_type,
                )
                body = MessageOut.model_validate(message).model_dump(mode="json", by_alias=True)
        except ServiceError as e:
            await self._emit_error(sid, e.code)
            return {"ok": False}
        except Exception as e:
            logger.error("Send failed", sid=sid, conversation_id=payload.conversation_id, error=str(e))
            await self._emit_error(sid, "Failed to send message")
            return {"ok": False}

        body["senderRole"] = session["role"]

        # Broadcast only after the insert is committed
        await self.sio.emit("new_message", body, to=conversation_room(payload.conversation_id))
        CHAT_MESSAGES.inc()
        return {"ok": True, "id": body["id"]}

    async def on_mark_as_read(self, sid: str, data: Any):
        session = await self._session(sid)

        try:
            payload = MarkReadPayload.model_validate(data)
        except PayloadError:
            await self._emit_error(sid, "validation")
            return {"ok": False}

        try:
            async with self.session_factory() as db:
                await ConversationService(db).mark_as_read(
                    payload.conversation_id,
                    session["user_id"],
                    payload.message_ids,
                )
        except ServiceError as e:
            await self._emit_error(sid, e.code)
            return {"ok": False}
        except Exception as e:
            logger.error("Mark as read failed", sid=sid, error=str(e))
            await self._emit_error(sid, "Failed to mark messages as read")
            return {"ok": False}

        await self.sio.emit(
            "messages_read",
            {
                "conversationId": payload.conversation_id,
                "messageIds": payload.message_ids,
                "readBy": session["user_id"],
            },
            to=conversation_room(payload.conversation_id),
            skip_sid=sid,
        )
        return {"ok": True}

    # =========================================================================
    # TYPING
    # =========================================================================

    async def on_typing_start(self, sid: str, data: Any):
        await self._typing(sid, data, True)

    async def on_typing_stop(self, sid: str, data: Any):
        await self._typing(sid, data, False)

    async def _typing(self, sid: str, data: Any, is_typing: bool):
        conversation_id = _conversation_id(data)
        if conversation_id is None:
            return

        room = conversation_room(conversation_id)
        # Only sockets admitted by join_conversation may signal a room
        if room not in self.sio.rooms(sid):
            return

        session = await self._session(sid)
        await self.sio.emit(
            "user_typing",
            {"userId": session["user_id"], "conversationId": conversation_id, "isTyping": is_typing},
            to=room,
            skip_sid=sid,
        )
