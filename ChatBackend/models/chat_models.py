from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ChatBackend.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Stores conversation-level metadata; `chat_id` is the public identifier, `id` fixes insertion order
class Chat(Base):
    __tablename__ = "chats"

    __table_args__ = (
        Index("ix_chats_user_id_last_message_at", "user_id", "last_message_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(String(36), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    title = Column(String(100), nullable=False, default="New Chat")
    is_active = Column(Boolean, nullable=False, default=True)
    message_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        order_by="ChatMessage.id",
        cascade="all, delete-orphan",
        lazy="select",
    )


# Stores individual chat messages; append order is the autoincrement id
class ChatMessage(Base):
    __tablename__ = "chat_messages"

    __table_args__ = (Index("ix_chat_messages_chat_pk_id", "chat_pk", "id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(36), unique=True, nullable=False)
    chat_pk = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    sender = Column(String(16), nullable=False)  # "user" | "assistant"
    content = Column(Text, nullable=False)
    timestamp = Column(UTCDateTime, default=_utcnow, nullable=False)

    chat = relationship("Chat", back_populates="messages")
