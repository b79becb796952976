"""Pytest fixtures."""

import os

os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["SWEEPER_ENABLED"] = "false"

import json  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from darbna.core.security import create_access_token  # noqa: E402
from darbna.db.base import Base  # noqa: E402
from darbna.db.session import SessionLocal, engine  # noqa: E402
from darbna.main import app  # noqa: E402
from darbna.models import SosAlert, SosHelper, User  # noqa: E402, F401 - register for create_all
from darbna.services.notifications import NotificationFanout  # noqa: E402
from darbna.services.push_gateway import ExpoPushGateway  # noqa: E402

EXPO_TEST_URL = "https://push.test/--/api/v2/push/send"


class ExpoStub:
    """Stands in for the Expo push API behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[list[dict]] = []
        # HTTP status per request, in order; 200 once exhausted
        self.statuses: list[int] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        batch = json.loads(request.content)
        self.requests.append(batch)
        status_code = self.statuses.pop(0) if self.statuses else 200
        if status_code != 200:
            return httpx.Response(status_code, json={"errors": [{"code": "INTERNAL_SERVER_ERROR"}]})
        tickets = [{"status": "ok", "id": f"ticket-{i}"} for i in range(len(batch))]
        return httpx.Response(200, json={"data": tickets})

    @property
    def messages(self) -> list[dict]:
        return [m for batch in self.requests for m in batch]

    def gateway(self, **kwargs) -> ExpoPushGateway:
        return ExpoPushGateway(url=EXPO_TEST_URL, transport=httpx.MockTransport(self.handler), **kwargs)


@pytest.fixture(scope="session")
def setup_db():
    """Create tables once for test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables(setup_db):
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db(setup_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(username: str, phone: str = "", push_token: str | None = None) -> User:
        user = User(username=username, phone=phone, push_token=push_token)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def expo():
    return ExpoStub()


@pytest.fixture
def client(setup_db, expo):
    """Test client whose fan-out talks to the Expo stub."""
    with TestClient(app) as c:
        app.state.fanout = NotificationFanout(app.state.pubsub, expo.gateway(), SessionLocal)
        yield c


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
