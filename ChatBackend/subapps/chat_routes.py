from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ChatBackend.auth import get_current_user
from ChatBackend.database import get_db
from ChatBackend.models.user_model import User
from ChatBackend.schemas.chat import ChatWithMessagesOut, NewChatRequest, RenameChatRequest, SendMessageRequest
from ChatBackend.services.chat_service import (
    MESSAGE_LIMIT_DEFAULT,
    PAGE_SIZE_DEFAULT,
    ChatService,
    chat_detail_out,
    message_out,
)


router = APIRouter(prefix="/chat", tags=["chat"])


def get_chat_service(request: Request, db: Session = Depends(get_db)) -> ChatService:
    return ChatService(db, request.app.state.generator, request.app.state.settings)


# Appends the user's message, gets the AI reply and returns the recent window
@router.post("/message")
async def send_message(
    payload: SendMessageRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = await svc.send_user_message(user.id, payload.message, chat_id=payload.chatId)
    return {"success": True, "message": "Message sent successfully", "data": result.to_out().wire()}


# Lists the user's active chats, most recently active first
@router.get("/history")
def chat_history(
    limit: Optional[int] = None,
    page: Optional[int] = None,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = svc.list_conversations(user.id, page=page or 1, limit=limit or PAGE_SIZE_DEFAULT)
    return {"success": True, "message": "Chat history retrieved successfully", "data": result.to_out().wire()}


@router.post("/new", status_code=201)
def create_chat(
    payload: Optional[NewChatRequest] = None,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chat = svc.create_conversation(user.id, title=payload.title if payload else None)
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": "New chat created successfully",
            "data": {"chat": chat_detail_out(chat).wire()},
        },
    )


@router.get("/{chat_id}")
def get_chat(
    chat_id: str,
    limit: Optional[int] = None,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chat, messages = svc.get_conversation(chat_id, user.id, message_limit=limit or MESSAGE_LIMIT_DEFAULT)
    body = ChatWithMessagesOut(chat=chat_detail_out(chat), messages=[message_out(m) for m in messages])
    return {"success": True, "message": "Chat retrieved successfully", "data": body.wire()}


@router.delete("/{chat_id}")
def delete_chat(
    chat_id: str,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chat = svc.soft_delete(chat_id, user.id)
    return {"success": True, "message": "Chat deleted successfully", "data": {"chatId": chat.chat_id}}


@router.put("/{chat_id}/title")
def update_chat_title(
    chat_id: str,
    payload: RenameChatRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chat = svc.rename_conversation(chat_id, user.id, payload.title)
    return {
        "success": True,
        "message": "Chat title updated successfully",
        "data": {"chat": {"id": chat.chat_id, "title": chat.title}},
    }
