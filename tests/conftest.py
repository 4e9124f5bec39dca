"""Shared fixtures: scripted LLM, in-memory stores, SQLite repository, test client."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.application.orchestrator import Orchestrator
from app.core.config import CHAT_MODE_STRUCTURED
from app.infrastructure.database import Base
from app.infrastructure.repositories.order_repository import SqlOrderRepository
from app.infrastructure.state_manager import InMemorySessionStore
from app.interfaces.IAiService import IAiService
from app.main import create_app


class ScriptedAiService(IAiService):
    """Returns queued replies in order; queued exceptions are raised instead."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    async def chat(self, system_prompt, history, json_mode=False):
        self.calls.append({"system_prompt": system_prompt, "history": list(history), "json_mode": json_mode})
        if not self.replies:
            raise AssertionError("ScriptedAiService has no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_store(clock):
    return InMemorySessionStore(ttl=86400, clock=clock)


@pytest.fixture
def db_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def order_repo(db_session_factory):
    return SqlOrderRepository(db_session_factory)


@pytest.fixture
def ai_service():
    return ScriptedAiService()


@pytest.fixture
def orchestrator(ai_service, session_store, order_repo):
    return Orchestrator(ai_service=ai_service, session_store=session_store, order_repo=order_repo)


@pytest.fixture
def structured_orchestrator(ai_service, session_store, order_repo):
    return Orchestrator(
        ai_service=ai_service,
        session_store=session_store,
        order_repo=order_repo,
        chat_mode=CHAT_MODE_STRUCTURED,
    )


@pytest.fixture
def client(orchestrator):
    return TestClient(create_app(orchestrator))


@pytest.fixture
def structured_client(structured_orchestrator):
    return TestClient(create_app(structured_orchestrator))
