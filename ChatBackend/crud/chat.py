from sqlalchemy import func

from ChatBackend.models.chat_models import Chat, ChatMessage


# Create a new conversation row for a user
def create_chat(session, chat_id, user_id, title, now):
    chat = Chat(
        chat_id=chat_id,
        user_id=user_id,
        title=title,
        is_active=True,
        message_count=0,
        last_message_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(chat)
    session.flush()
    return chat


# Get a conversation owned by the user; inactive ones are skipped unless asked for
def get_owned_chat(session, chat_id, user_id, include_inactive=False):
    qry = session.query(Chat).filter(Chat.chat_id == chat_id, Chat.user_id == user_id)
    if not include_inactive:
        qry = qry.filter(Chat.is_active.is_(True))
    return qry.first()


# Append one message and bump the conversation's counters in the same flush
def create_chat_message(session, chat, message_id, sender, content, now):
    msg = ChatMessage(
        message_id=message_id,
        chat_pk=chat.id,
        sender=sender,
        content=content,
        timestamp=now,
    )
    session.add(msg)
    chat.message_count = (chat.message_count or 0) + 1
    chat.last_message_at = now
    chat.updated_at = now
    session.flush()
    return msg


# Most recent `limit` messages of a conversation, returned oldest first
def get_recent_messages(session, chat, limit):
    rows = (
        session.query(ChatMessage)
        .filter(ChatMessage.chat_pk == chat.id)
        .order_by(ChatMessage.id.desc())
        .limit(limit)
        .all()
    )
    rows.reverse()
    return rows


# Messages appended before `before_id`, newest `limit` of them, oldest first
def get_messages_before(session, chat, before_id, limit):
    rows = (
        session.query(ChatMessage)
        .filter(ChatMessage.chat_pk == chat.id, ChatMessage.id < before_id)
        .order_by(ChatMessage.id.desc())
        .limit(limit)
        .all()
    )
    rows.reverse()
    return rows


# Page through a user's active conversations by recency, ties in insertion order
def get_active_chats_page(session, user_id, offset, limit):
    return (
        session.query(Chat)
        .filter(Chat.user_id == user_id, Chat.is_active.is_(True))
        .order_by(Chat.last_message_at.desc(), Chat.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_active_chats(session, user_id):
    return (
        session.query(func.count(Chat.id))
        .filter(Chat.user_id == user_id, Chat.is_active.is_(True))
        .scalar()
    ) or 0
