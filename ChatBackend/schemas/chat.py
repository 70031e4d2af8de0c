from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ChatBackend.schemas.common import CamelModel


# Request body for sending a message (message + optional existing chat)
class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    message: Optional[str] = None
    chatId: Optional[str] = None


class NewChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    title: Optional[str] = None


class RenameChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    title: Optional[str] = None


# Single chat message returned from chat endpoints
class ChatMessageOut(CamelModel):
    id: str
    content: str
    sender: str
    timestamp: Optional[str] = None


# Chat summary row for the history listing
class ChatSummaryOut(CamelModel):
    id: str
    title: str
    last_message_at: Optional[str] = None
    message_count: int
    created_at: Optional[str] = None


class ChatDetailOut(CamelModel):
    id: str
    title: str
    created_at: Optional[str] = None
    last_message_at: Optional[str] = None
    message_count: int
    is_active: bool


class PaginationOut(CamelModel):
    current_page: int
    total_pages: int
    total_chats: int
    has_next_page: bool
    has_prev_page: bool
    limit: int


class ChatHistoryOut(CamelModel):
    chats: List[ChatSummaryOut]
    pagination: PaginationOut


class ChatWithMessagesOut(CamelModel):
    chat: ChatDetailOut
    messages: List[ChatMessageOut]


# Result of a send: the recent window plus the AI outcome for the turn
class SendMessageOut(CamelModel):
    chat_id: str
    messages: List[ChatMessageOut]
    message_count: int
    ai_service_status: str
    ai_error: Optional[str] = None
