import asyncio
import uuid

import pytest

from ChatBackend.config import Settings
from ChatBackend.database import init_db, make_engine, make_session_factory
from ChatBackend.errors import NotFound, ValidationError
from ChatBackend.models.chat_models import Chat, ChatMessage
from ChatBackend.services.ai.response_generator import FALLBACK_CONTENT, ErrorReason, GenerationResult
from ChatBackend.services.auth_service import AuthService
from ChatBackend.services.chat_service import ChatService, derive_title, normalize_chat_id

from conftest import FakeGenerator


def _send(svc, owner_id, content, chat_id=None):
    return asyncio.run(svc.send_user_message(owner_id, content, chat_id=chat_id))


def _log(db, chat):
    return db.query(ChatMessage).filter(ChatMessage.chat_pk == chat.id).order_by(ChatMessage.id).all()


def test_derive_title():
    assert derive_title("Hello!") == "Hello!"
    assert derive_title("x" * 50) == "x" * 50
    assert derive_title("y" * 51) == "y" * 50 + "..."


def test_normalize_chat_id():
    raw = str(uuid.uuid4())
    assert normalize_chat_id(raw.upper()) == raw
    assert normalize_chat_id("1699999999999") is None
    assert normalize_chat_id(None) is None


def test_create_empty_conversation_uses_placeholder(chat_service, user):
    chat = chat_service.create_conversation(user.id)
    assert chat.title == "New Chat"
    assert chat.is_active is True
    assert chat.message_count == 0


def test_create_conversation_with_title(chat_service, user):
    assert chat_service.create_conversation(user.id, title="  Trip plans ").title == "Trip plans"
    assert chat_service.create_conversation(user.id, title="   ").title == "New Chat"
    with pytest.raises(ValidationError):
        chat_service.create_conversation(user.id, title="t" * 101)


def test_create_conversation_with_initial_message(db, chat_service, user):
    long_text = "Tell me everything about the history of computing, please."
    chat = chat_service.create_conversation(user.id, long_text)

    assert chat.title == long_text[:50] + "..."
    assert chat.message_count == 1
    log = _log(db, chat)
    assert [(m.sender, m.content) for m in log] == [("user", long_text)]
    assert chat.last_message_at == log[0].timestamp


def test_append_keeps_call_order_and_monotonic_timestamps(db, chat_service, user):
    chat = chat_service.create_conversation(user.id)
    contents = [f"message {i}" for i in range(12)]
    for i, text in enumerate(contents):
        chat_service.append_message(chat.chat_id, user.id, text, "user" if i % 2 == 0 else "assistant")

    log = _log(db, chat)
    assert [m.content for m in log] == contents
    stamps = [m.timestamp for m in log]
    assert stamps == sorted(stamps)
    assert len({m.message_id for m in log}) == len(log)
    assert chat.message_count == 12
    assert chat.last_message_at == stamps[-1]


def test_append_trims_and_bounds_content(chat_service, user):
    chat = chat_service.create_conversation(user.id)
    assert chat_service.append_message(chat.chat_id, user.id, "  hi  ", "user").content == "hi"
    assert len(chat_service.append_message(chat.chat_id, user.id, "a" * 5000, "user").content) == 5000

    for bad in ["", "   ", "a" * 5001, None]:
        with pytest.raises(ValidationError):
            chat_service.append_message(chat.chat_id, user.id, bad, "user")


def test_append_rejects_unknown_sender(chat_service, user):
    chat = chat_service.create_conversation(user.id)
    with pytest.raises(ValidationError):
        chat_service.append_message(chat.chat_id, user.id, "hello", "ai")


def test_append_to_foreign_or_missing_chat_is_not_found(chat_service, user, other_user):
    chat = chat_service.create_conversation(user.id)
    with pytest.raises(NotFound):
        chat_service.append_message(chat.chat_id, other_user.id, "hi", "user")
    with pytest.raises(NotFound):
        chat_service.append_message(str(uuid.uuid4()), user.id, "hi", "user")
    with pytest.raises(NotFound):
        chat_service.append_message("not-a-uuid", user.id, "hi", "user")


def test_send_creates_chat_with_user_and_assistant_turn(db, chat_service, generator, user):
    result = _send(chat_service, user.id, "Hello!")

    assert result.chat.title == "Hello!"
    assert result.message_count == 2
    assert [(m.sender, m.content) for m in result.messages] == [("user", "Hello!"), ("assistant", "Echo: Hello!")]
    assert result.ai_status == "success"
    assert result.ai_error is None
    assert generator.calls == [{"prompt": "Hello!", "history": []}]


def test_send_stores_fallback_reply_when_gateway_fails(db, chat_service, generator, user):
    generator.queue(GenerationResult.failed(ErrorReason.RATE_LIMITED, "Rate limit exceeded"))

    result = _send(chat_service, user.id, "Hello!")

    assert result.ai_status == "error"
    assert result.ai_error == "rateLimited"
    assert [(m.sender, m.content) for m in _log(db, result.chat)] == [
        ("user", "Hello!"),
        ("assistant", FALLBACK_CONTENT[ErrorReason.RATE_LIMITED]),
    ]
    out = result.to_out().wire()
    assert out["aiServiceStatus"] == "error"
    assert out["aiError"] == "rateLimited"
    assert out["messageCount"] == 2


def test_each_send_adds_exactly_one_pair(db, chat_service, generator, user):
    first = _send(chat_service, user.id, "one")
    generator.queue(GenerationResult.failed(ErrorReason.TRANSPORT_ERROR, "boom"))
    _send(chat_service, user.id, "two", chat_id=first.chat.chat_id)
    third = _send(chat_service, user.id, "three", chat_id=first.chat.chat_id)

    senders = [m.sender for m in _log(db, first.chat)]
    assert senders == ["user", "assistant"] * 3
    assert third.message_count == 6


def test_send_passes_bounded_prior_history(chat_service, generator, user):
    chat = chat_service.create_conversation(user.id)
    for i in range(14):
        chat_service.append_message(chat.chat_id, user.id, f"m{i}", "user")

    _send(chat_service, user.id, "latest", chat_id=chat.chat_id)

    history = generator.calls[-1]["history"]
    assert [c for _, c in history] == [f"m{i}" for i in range(4, 14)]
    assert generator.calls[-1]["prompt"] == "latest"


def test_send_returns_recent_twenty_in_order(chat_service, user):
    chat = chat_service.create_conversation(user.id)
    for i in range(30):
        chat_service.append_message(chat.chat_id, user.id, f"m{i}", "user")

    result = _send(chat_service, user.id, "last", chat_id=chat.chat_id)

    assert len(result.messages) == 20
    assert result.message_count == 32
    assert result.messages[-2].content == "last"
    assert result.messages[-1].sender == "assistant"
    assert result.messages[0].content == "m12"


def test_send_with_malformed_chat_id_creates_new_chat(db, chat_service, user):
    existing = chat_service.create_conversation(user.id)
    result = _send(chat_service, user.id, "hi there", chat_id="1712345678901")

    assert result.chat.chat_id != existing.chat_id
    assert db.query(Chat).filter(Chat.user_id == user.id).count() == 2


def test_send_with_malformed_chat_id_in_strict_mode(db, generator, user):
    svc = ChatService(db, generator, Settings(strict_chat_ids=True))
    with pytest.raises(ValidationError):
        _send(svc, user.id, "hi", chat_id="1712345678901")
    assert db.query(Chat).count() == 0


def test_send_to_unknown_or_foreign_chat_is_not_found(chat_service, generator, user, other_user):
    with pytest.raises(NotFound):
        _send(chat_service, user.id, "hi", chat_id=str(uuid.uuid4()))
    theirs = chat_service.create_conversation(other_user.id)
    with pytest.raises(NotFound):
        _send(chat_service, user.id, "hi", chat_id=theirs.chat_id)
    assert generator.calls == []


def test_send_rejects_bad_content_before_touching_storage(db, chat_service, user):
    for bad in ["", "  ", "z" * 5001]:
        with pytest.raises(ValidationError):
            _send(chat_service, user.id, bad)
    assert db.query(Chat).count() == 0


def test_oversized_ai_reply_is_replaced_by_fallback(chat_service, generator, user):
    generator.queue(GenerationResult(success=True, content="r" * 5001))
    result = _send(chat_service, user.id, "write a novel")

    assert result.ai_error == "malformedResponse"
    assert result.messages[-1].content == FALLBACK_CONTENT[ErrorReason.MALFORMED_RESPONSE]


def test_pagination_page_two_of_three(chat_service, user):
    chats = [chat_service.create_conversation(user.id, f"chat {i}") for i in range(25)]

    page = chat_service.list_conversations(user.id, page=2, limit=10)

    newest_first = list(reversed(chats))
    assert [c.chat_id for c in page.items] == [c.chat_id for c in newest_first[10:20]]
    assert page.total == 25
    assert page.total_pages == 3
    assert page.has_next_page is True
    assert page.has_prev_page is True


def test_list_orders_by_last_activity(chat_service, user):
    older = chat_service.create_conversation(user.id, "older")
    newer = chat_service.create_conversation(user.id, "newer")
    chat_service.append_message(older.chat_id, user.id, "bump", "user")

    items = chat_service.list_conversations(user.id).items
    assert [c.chat_id for c in items] == [older.chat_id, newer.chat_id]


def test_list_is_scoped_to_owner(chat_service, user, other_user):
    chat_service.create_conversation(other_user.id, "theirs")
    page = chat_service.list_conversations(user.id)
    assert page.items == []
    assert page.total == 0
    assert page.total_pages == 0
    assert page.has_next_page is False
    assert page.has_prev_page is False


def test_list_rejects_bad_paging(chat_service, user):
    with pytest.raises(ValidationError) as exc:
        chat_service.list_conversations(user.id, limit=101)
    assert exc.value.message == "Limit cannot exceed 100"
    with pytest.raises(ValidationError):
        chat_service.list_conversations(user.id, page=0)


def test_get_conversation_returns_recent_window_oldest_first(chat_service, user):
    chat = chat_service.create_conversation(user.id)
    for i in range(8):
        chat_service.append_message(chat.chat_id, user.id, f"m{i}", "user")

    found, messages = chat_service.get_conversation(chat.chat_id, user.id, message_limit=3)
    assert found.chat_id == chat.chat_id
    assert [m.content for m in messages] == ["m5", "m6", "m7"]


def test_other_user_cannot_read_conversation(chat_service, user, other_user):
    chat = chat_service.create_conversation(user.id, "private")
    with pytest.raises(NotFound):
        chat_service.get_conversation(chat.chat_id, other_user.id)


def test_soft_delete_hides_but_keeps_row(db, chat_service, user):
    keep = chat_service.create_conversation(user.id, "keep")
    gone = chat_service.create_conversation(user.id, "gone")

    deleted = chat_service.soft_delete(gone.chat_id, user.id)

    assert deleted.is_active is False
    assert [c.chat_id for c in chat_service.list_conversations(user.id).items] == [keep.chat_id]
    with pytest.raises(NotFound):
        chat_service.get_conversation(gone.chat_id, user.id)
    with pytest.raises(NotFound):
        chat_service.append_message(gone.chat_id, user.id, "still there?", "user")
    assert db.query(Chat).filter(Chat.chat_id == gone.chat_id).one().is_active is False

    assert chat_service.soft_delete(gone.chat_id, user.id).is_active is False


def test_soft_delete_foreign_chat_is_not_found(chat_service, user, other_user):
    chat = chat_service.create_conversation(user.id)
    with pytest.raises(NotFound):
        chat_service.soft_delete(chat.chat_id, other_user.id)


def test_rename_bounds(chat_service, user):
    chat = chat_service.create_conversation(user.id, "hello")

    with pytest.raises(ValidationError):
        chat_service.rename_conversation(chat.chat_id, user.id, "t" * 101)
    with pytest.raises(ValidationError):
        chat_service.rename_conversation(chat.chat_id, user.id, "   ")

    renamed = chat_service.rename_conversation(chat.chat_id, user.id, "t" * 100)
    assert renamed.title == "t" * 100


def test_rename_foreign_chat_is_not_found(chat_service, user, other_user):
    chat = chat_service.create_conversation(user.id)
    with pytest.raises(NotFound):
        chat_service.rename_conversation(chat.chat_id, other_user.id, "mine now")


def test_create_conversation_rejects_sender_before_creating_chat(db, chat_service, user):
    with pytest.raises(ValidationError):
        chat_service.create_conversation(user.id, "hello", "bogus")

    db.commit()
    assert db.query(Chat).filter(Chat.user_id == user.id).count() == 0


def test_timestamps_reload_as_utc(db, chat_service, user):
    chat = chat_service.create_conversation(user.id, "hello")
    db.expunge_all()

    reloaded = db.query(Chat).filter(Chat.chat_id == chat.chat_id).one()
    msg = _log(db, reloaded)[0]
    assert reloaded.created_at.tzinfo is not None
    assert reloaded.created_at.utcoffset().total_seconds() == 0
    assert msg.timestamp.tzinfo is not None
    assert reloaded.last_message_at == msg.timestamp == chat.last_message_at


def test_send_holds_no_connection_while_awaiting_reply(tmp_path, settings, clock):
    engine = make_engine(f"sqlite:///{tmp_path / 'chat.db'}")
    init_db(engine)
    session = make_session_factory(engine)()
    checked_out = []

    class PoolWatchingGenerator(FakeGenerator):
        async def generate(self, prompt, history=()):
            checked_out.append(engine.pool.checkedout())
            return await super().generate(prompt, history)

    try:
        owner = AuthService(session).register("Ada", "ada@x.com", "secret1")
        svc = ChatService(session, PoolWatchingGenerator(), settings, clock=clock)
        first = _send(svc, owner.id, "Hello!")
        second = _send(svc, owner.id, "And again", chat_id=first.chat.chat_id)
    finally:
        session.close()
        engine.dispose()

    assert checked_out == [0, 0]
    assert second.message_count == 4
