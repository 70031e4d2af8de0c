from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ChatBackend.config import Settings
from ChatBackend.crud import chat as chat_crud
from ChatBackend.errors import NotFound, ValidationError
from ChatBackend.models.chat_models import Chat, ChatMessage
from ChatBackend.schemas.chat import (
    ChatDetailOut,
    ChatHistoryOut,
    ChatMessageOut,
    ChatSummaryOut,
    PaginationOut,
    SendMessageOut,
)
from ChatBackend.schemas.common import iso
from ChatBackend.services.ai.response_generator import (
    HISTORY_WINDOW,
    ErrorReason,
    GenerationResult,
    ResponseGenerator,
)


logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_MAX = 100
TITLE_PREVIEW = 50
MESSAGE_MAX = 5000
RECENT_WINDOW = 20
PAGE_SIZE_DEFAULT = 20
PAGE_SIZE_MAX = 100
MESSAGE_LIMIT_DEFAULT = 50

SENDER_USER = "user"
SENDER_ASSISTANT = "assistant"
SENDERS = (SENDER_USER, SENDER_ASSISTANT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Canonical form of a chat id, or None when the value is not a UUID
def normalize_chat_id(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        return None


def derive_title(content: str) -> str:
    return content[:TITLE_PREVIEW] + ("..." if len(content) > TITLE_PREVIEW else "")


def clean_content(content: Optional[str]) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Message content is required")
    trimmed = content.strip()
    if len(trimmed) > MESSAGE_MAX:
        raise ValidationError(f"Message cannot exceed {MESSAGE_MAX} characters")
    return trimmed


def clean_title(title: Optional[str]) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Chat title is required")
    trimmed = title.strip()
    if len(trimmed) > TITLE_MAX:
        raise ValidationError(f"Chat title cannot exceed {TITLE_MAX} characters")
    return trimmed


def check_sender(sender: str) -> None:
    if sender not in SENDERS:
        raise ValidationError('Sender must be either "user" or "assistant"')


def message_out(msg: ChatMessage) -> ChatMessageOut:
    return ChatMessageOut(id=msg.message_id, content=msg.content, sender=msg.sender, timestamp=iso(msg.timestamp))


def chat_summary_out(chat: Chat) -> ChatSummaryOut:
    return ChatSummaryOut(
        id=chat.chat_id,
        title=chat.title,
        last_message_at=iso(chat.last_message_at),
        message_count=chat.message_count,
        created_at=iso(chat.created_at),
    )


def chat_detail_out(chat: Chat) -> ChatDetailOut:
    return ChatDetailOut(
        id=chat.chat_id,
        title=chat.title,
        created_at=iso(chat.created_at),
        last_message_at=iso(chat.last_message_at),
        message_count=chat.message_count,
        is_active=chat.is_active,
    )


@dataclass(frozen=True)
class SendResult:
    chat: Chat
    messages: List[ChatMessage]
    message_count: int
    ai: GenerationResult

    @property
    def ai_status(self) -> str:
        return "success" if self.ai.success else "error"

    @property
    def ai_error(self) -> Optional[str]:
        return None if self.ai.success else self.ai.error_reason.value

    def to_out(self) -> SendMessageOut:
        return SendMessageOut(
            chat_id=self.chat.chat_id,
            messages=[message_out(m) for m in self.messages],
            message_count=self.message_count,
            ai_service_status=self.ai_status,
            ai_error=self.ai_error,
        )


@dataclass(frozen=True)
class ChatPage:
    items: List[Chat]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1

    def to_out(self) -> ChatHistoryOut:
        return ChatHistoryOut(
            chats=[chat_summary_out(c) for c in self.items],
            pagination=PaginationOut(
                current_page=self.page,
                total_pages=self.total_pages,
                total_chats=self.total,
                has_next_page=self.has_next_page,
                has_prev_page=self.has_prev_page,
                limit=self.limit,
            ),
        )


class ChatService:
    """Owns conversations and their append-only message logs.

    Every lookup is scoped to the owner: a conversation that exists but belongs
    to someone else is reported exactly like one that does not exist. Message
    order is append order (the autoincrement row id); timestamps are assigned
    here at append time and never taken from the client.
    """

    def __init__(
        self,
        db: Session,
        generator: ResponseGenerator,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.generator = generator
        self.strict_chat_ids = settings.strict_chat_ids
        self._clock = clock or _utcnow

    def _get_owned(self, chat_id: Optional[str], owner_id: int, *, include_inactive: bool = False) -> Chat:
        normalized = normalize_chat_id(chat_id)
        chat = None
        if normalized is not None:
            chat = chat_crud.get_owned_chat(self.db, normalized, owner_id, include_inactive=include_inactive)
        if chat is None:
            raise NotFound()
        return chat

    def _new_chat(self, owner_id: int, title: str) -> Chat:
        return chat_crud.create_chat(self.db, str(uuid.uuid4()), owner_id, title, self._clock())

    def _append(self, chat: Chat, content: str, sender: str) -> ChatMessage:
        check_sender(sender)
        return chat_crud.create_chat_message(self.db, chat, str(uuid.uuid4()), sender, content, self._clock())

    def create_conversation(
        self,
        owner_id: int,
        initial_message: Optional[str] = None,
        initial_sender: str = SENDER_USER,
        *,
        title: Optional[str] = None,
    ) -> Chat:
        if initial_message is not None:
            content = clean_content(initial_message)
            check_sender(initial_sender)
            chat = self._new_chat(owner_id, derive_title(content))
            self._append(chat, content, initial_sender)
        else:
            chat_title = clean_title(title) if title is not None and title.strip() else DEFAULT_TITLE
            chat = self._new_chat(owner_id, chat_title)
        self.db.commit()
        logger.info("Chat created: %s (user=%s)", chat.chat_id, owner_id)
        return chat

    def append_message(self, chat_id: str, owner_id: int, content: Optional[str], sender: str) -> ChatMessage:
        chat = self._get_owned(chat_id, owner_id)
        msg = self._append(chat, clean_content(content), sender)
        self.db.commit()
        return msg

    # Picks the conversation a send goes to; malformed ids start a new one unless strict mode is on
    def _resolve_send_target(self, chat_id: Optional[str], owner_id: int, content: str) -> Tuple[Chat, ChatMessage]:
        if chat_id:
            if normalize_chat_id(chat_id) is not None:
                chat = self._get_owned(chat_id, owner_id)
                return chat, self._append(chat, content, SENDER_USER)
            if self.strict_chat_ids:
                raise ValidationError("Invalid chat ID format")
            logger.warning("Invalid chatId format, creating new chat instead: %r", chat_id)

        chat = self._new_chat(owner_id, derive_title(content))
        logger.info("Chat created: %s (user=%s)", chat.chat_id, owner_id)
        return chat, self._append(chat, content, SENDER_USER)

    async def send_user_message(self, owner_id: int, content: Optional[str], chat_id: Optional[str] = None) -> SendResult:
        text = clean_content(content)
        chat, user_msg = self._resolve_send_target(chat_id, owner_id, text)
        history = chat_crud.get_messages_before(self.db, chat, user_msg.id, HISTORY_WINDOW)
        # Commit releases the connection; none is held while the provider answers
        self.db.commit()

        result = await self.generator.generate(text, history)
        reply = (result.content or "").strip()
        if result.success and len(reply) > MESSAGE_MAX:
            result = GenerationResult.failed(ErrorReason.MALFORMED_RESPONSE, "Response exceeds message size limit")
            reply = result.content
        if not result.success:
            logger.error("AI service error for chat %s: %s", chat.chat_id, result.detail)

        self._append(chat, reply, SENDER_ASSISTANT)
        self.db.commit()

        recent = chat_crud.get_recent_messages(self.db, chat, RECENT_WINDOW)
        return SendResult(chat=chat, messages=recent, message_count=chat.message_count, ai=result)

    def list_conversations(self, owner_id: int, page: int = 1, limit: int = PAGE_SIZE_DEFAULT) -> ChatPage:
        if limit > PAGE_SIZE_MAX:
            raise ValidationError(f"Limit cannot exceed {PAGE_SIZE_MAX}")
        if limit < 1 or page < 1:
            raise ValidationError("Page and limit must be positive integers")
        items = chat_crud.get_active_chats_page(self.db, owner_id, (page - 1) * limit, limit)
        total = chat_crud.count_active_chats(self.db, owner_id)
        return ChatPage(items=items, page=page, limit=limit, total=total)

    def get_conversation(
        self, chat_id: str, owner_id: int, message_limit: int = MESSAGE_LIMIT_DEFAULT
    ) -> Tuple[Chat, List[ChatMessage]]:
        if message_limit < 1:
            raise ValidationError("Message limit must be a positive integer")
        chat = self._get_owned(chat_id, owner_id)
        return chat, chat_crud.get_recent_messages(self.db, chat, message_limit)

    # Deleting twice is allowed; the second call re-flips an already-false flag
    def soft_delete(self, chat_id: str, owner_id: int) -> Chat:
        chat = self._get_owned(chat_id, owner_id, include_inactive=True)
        chat.is_active = False
        chat.updated_at = self._clock()
        self.db.commit()
        logger.info("Chat deleted (marked inactive): %s", chat.chat_id)
        return chat

    def rename_conversation(self, chat_id: str, owner_id: int, new_title: Optional[str]) -> Chat:
        title = clean_title(new_title)
        chat = self._get_owned(chat_id, owner_id)
        chat.title = title
        chat.updated_at = self._clock()
        self.db.commit()
        logger.info("Chat title updated: %s", chat.chat_id)
        return chat
