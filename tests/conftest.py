from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from ChatBackend.app import create_app
from ChatBackend.config import Settings
from ChatBackend.database import init_db, make_engine, make_session_factory
from ChatBackend.services.ai.response_generator import GenerationResult
from ChatBackend.services.auth_service import AuthService
from ChatBackend.services.chat_service import ChatService


# Scripted stand-in for the upstream provider; records every call it receives
class FakeGenerator:
    configured = True
    model = "fake-model"

    def __init__(self):
        self.results = []
        self.calls = []

    def queue(self, *results):
        self.results.extend(results)

    async def generate(self, prompt, history=()):
        self.calls.append({"prompt": prompt, "history": [(m.sender, m.content) for m in history]})
        if self.results:
            return self.results.pop(0)
        return GenerationResult(success=True, content=f"Echo: {prompt}")

    async def ping(self):
        return {"success": True, "message": "ok"}

    async def aclose(self):
        return None


# Deterministic clock advancing one second per reading
class StepClock:
    def __init__(self, start=None):
        self.current = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret",
        ai_api_key=None,
        environment="test",
    )


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def auth_service(db):
    return AuthService(db)


@pytest.fixture
def chat_service(db, generator, settings, clock):
    return ChatService(db, generator, settings, clock=clock)


@pytest.fixture
def user(auth_service):
    return auth_service.register("Ada Lovelace", "ada@x.com", "secret1")


@pytest.fixture
def other_user(auth_service):
    return auth_service.register("Bob", "bob@x.com", "secret2")


@pytest.fixture
def app(settings, engine, generator):
    return create_app(settings, engine=engine, generator=generator)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def signup(client, name="Ada", email="ada@x.com", password="secret1"):
    res = client.post("/api/auth/signup", json={"name": name, "email": email, "password": password})
    assert res.status_code == 201, res.text
    data = res.json()["data"]
    return data["token"], data["user"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
