"""Pytest fixtures for service and API tests."""

import os
from collections.abc import Generator

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tradyfi.api import deps
from tradyfi.api.deps import get_db
from tradyfi.core.security import create_access_token
from tradyfi.db import models  # noqa: F401  # Imported for side effects
from tradyfi.db.base import Base
from tradyfi.db.models import (
    ChatMessage,
    ChatRoom,
    FCMToken,
    PushSubscription,
    Trader,
    User,
    VisitorNotification,
)
from tradyfi.main import create_app
from tradyfi.services.dispatch import DispatchService
from tradyfi.services.providers import MulticastOutcome
from tradyfi.services.realtime import ChatConnectionManager
from tradyfi.utils.exceptions import ProviderError

TABLES = [
    User.__table__,
    Trader.__table__,
    PushSubscription.__table__,
    FCMToken.__table__,
    VisitorNotification.__table__,
    ChatRoom.__table__,
    ChatMessage.__table__,
]


class StubWebPushClient:
    """Records web-push sends; endpoints can be marked gone or failing."""

    enabled = True

    def __init__(self):
        self.calls = []
        self.gone_endpoints = set()
        self.failing_endpoints = set()
        self.closed = False

    def send(self, subscription_info, payload):
        self.calls.append((subscription_info, payload))
        endpoint = subscription_info["endpoint"]
        if endpoint in self.gone_endpoints:
            raise ProviderError("Push subscription has unsubscribed or expired", invalid=True, code="410")
        if endpoint in self.failing_endpoints:
            raise ProviderError("Push service unavailable", code="503")

    def close(self):
        self.closed = True


class StubFCMClient:
    """Records FCM calls; tokens listed in ``invalid_tokens`` are rejected as unregistered."""

    enabled = True

    def __init__(self):
        self.sent = []
        self.multicasts = []
        self.topic_messages = []
        self.topic_changes = []
        self.invalid_tokens = set()
        self.fail_topics = False
        self.closed = False

    def _error_for(self, token):
        if token in self.invalid_tokens:
            return ProviderError("Requested entity was not found.", invalid=True, code="NOT_FOUND")
        return None

    def send_to_token(self, token, payload):
        self.sent.append((token, payload))
        error = self._error_for(token)
        if error is not None:
            raise error
        return f"projects/tradyfi/messages/{len(self.sent)}"

    def send_multicast(self, tokens, payload):
        self.multicasts.append((list(tokens), payload))
        return [MulticastOutcome(token=token, error=self._error_for(token)) for token in tokens]

    def send_to_topic(self, topic, payload):
        if self.fail_topics:
            raise ProviderError("Topic send failed")
        self.topic_messages.append((topic, payload))
        return "projects/tradyfi/messages/topic"

    def subscribe_to_topic(self, tokens, topic):
        if self.fail_topics:
            raise ProviderError("Topic management failed")
        self.topic_changes.append(("subscribe", list(tokens), topic))
        return 0

    def unsubscribe_from_topic(self, tokens, topic):
        if self.fail_topics:
            raise ProviderError("Topic management failed")
        self.topic_changes.append(("unsubscribe", list(tokens), topic))
        return 0

    def close(self):
        self.closed = True


@pytest.fixture(scope="session")
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))


@pytest.fixture()
def db_session(db_engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        for table in reversed(TABLES):
            db.execute(table.delete())
        db.commit()
        db.close()


@pytest.fixture()
def webpush_stub() -> StubWebPushClient:
    return StubWebPushClient()


@pytest.fixture()
def fcm_stub() -> StubFCMClient:
    return StubFCMClient()


@pytest.fixture()
def sleep_calls() -> list:
    return []


@pytest.fixture()
def dispatcher(fcm_stub, webpush_stub, sleep_calls) -> DispatchService:
    async def fake_sleep(seconds: float) -> None:
        sleep_calls.append(seconds)

    return DispatchService(fcm_stub, webpush_stub, timeout=5.0, sleep=fake_sleep)


@pytest.fixture()
def client(db_session: Session, dispatcher: DispatchService) -> Generator[TestClient, None, None]:
    app = create_app(dispatch_service=dispatcher)
    connection_manager = ChatConnectionManager(redis_url=None)

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_connection_manager] = lambda: connection_manager
    with TestClient(app) as test_client:
        yield test_client


def _make_user(db_session: Session, email: str, full_name: str, role: str = "user") -> User:
    user = User(email=email, full_name=full_name, role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def user(db_session) -> User:
    return _make_user(db_session, "ada@example.com", "Ada Obi")


@pytest.fixture()
def admin_user(db_session) -> User:
    return _make_user(db_session, "admin@tradyfi.ng", "Tradyfi Admin", role="admin")


@pytest.fixture()
def trader_owner(db_session) -> User:
    return _make_user(db_session, "owner@shop.example.com", "Chidi Okafor")


@pytest.fixture()
def trader(db_session, trader_owner) -> Trader:
    trader = Trader(user_id=trader_owner.id, business_name="Chidi Fabrics", subdomain="chidifabrics")
    db_session.add(trader)
    db_session.commit()
    db_session.refresh(trader)
    return trader


@pytest.fixture()
def chat_room(db_session, user, trader) -> ChatRoom:
    room = ChatRoom(user_id=user.id, trader_id=trader.id)
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture()
def auth_headers():
    def _headers(user: User, role: str | None = None) -> dict[str, str]:
        token = create_access_token(user.id, role=role or user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
