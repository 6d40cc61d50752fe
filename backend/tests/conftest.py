"""Shared test fixtures for backend tests."""

from datetime import datetime, timezone
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from advisor.core.database import get_session
from advisor.core.errors import ProviderError
from advisor.models.user import User
from advisor.services.integrations.base import CalendarProvider, CrmProvider, EmailProvider, Providers
from advisor.services.llm.base import BaseLLMProvider, LLMResponse
from advisor.services.retrieval import BaseRetriever, RelevantDocument
from advisor.services.tasks import TaskService
from advisor.services.tools.base import ToolContext

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Wednesday 13 March 2024, 15:00 UTC
FIXED_NOW = datetime(2024, 3, 13, 15, 0, tzinfo=timezone.utc)


def get_test_session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import advisor.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


def seed_user(email="advisor@firm.com", name="Alex Advisor", **tokens) -> int:
    with Session(test_engine) as session:
        user = User(email=email, name=name, **tokens)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user.id


def seed(*rows):
    """Insert rows and return their ids."""
    with Session(test_engine) as session:
        for row in rows:
            session.add(row)
        session.commit()
        for row in rows:
            session.refresh(row)
        return [row.id for row in rows]


# --- provider fakes ---

class FakeEmail(EmailProvider):
    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.searches: list[str] = []
        self.messages: list[dict[str, Any]] = []
        self.fail: ProviderError | None = None

    async def search(self, user_id, query, max_results=10):
        self.searches.append(query)
        if self.fail:
            raise self.fail
        return self.messages[:max_results]

    async def send(self, user_id, to, subject, body):
        if self.fail:
            raise self.fail
        self.sent.append({"to": to, "subject": subject, "body": body})
        return {"message_id": f"msg-{len(self.sent)}", "thread_id": f"thread-{len(self.sent)}"}


class FakeCalendar(CalendarProvider):
    def __init__(self):
        self.created: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.sync_calls = 0
        self.fail: ProviderError | None = None
        self.fail_delete: set[str] = set()

    async def list_events(self, user_id, time_min=None, time_max=None, max_results=50):
        return []

    async def create_event(self, user_id, title, start, end, attendees=None, description=None, location=None):
        if self.fail:
            raise self.fail
        self.created.append({
            "title": title, "start": start, "end": end,
            "attendees": attendees or [], "description": description, "location": location,
        })
        return {"event_id": f"evt-{len(self.created)}", "html_link": None}

    async def delete_event(self, user_id, event_id):
        if event_id in self.fail_delete:
            raise ProviderError("Calendar server error. Please try again later.", "Calendar", code="SERVER_ERROR")
        self.deleted.append(event_id)

    async def sync(self, user_id):
        self.sync_calls += 1
        return 0


class FakeCrm(CrmProvider):
    def __init__(self):
        self.contacts: list[dict[str, Any]] = []
        self.notes: dict[str, list[dict[str, Any]]] = {}
        self.created: list[dict[str, Any]] = []
        self.fail: ProviderError | None = None

    async def search_contacts(self, user_id, query):
        if self.fail:
            raise self.fail
        wanted = query.lower()
        return [
            c for c in self.contacts
            if not wanted or wanted in f"{c.get('first_name', '')} {c.get('last_name', '')} {c.get('email', '')}".lower()
        ]

    async def create_contact(self, user_id, email, first_name=None, last_name=None, company=None):
        if self.fail:
            raise self.fail
        contact = {
            "id": f"hs-{len(self.created) + 1}", "email": email,
            "first_name": first_name, "last_name": last_name, "company": company,
        }
        self.created.append(contact)
        return contact

    async def list_notes(self, user_id, contact_id):
        return self.notes.get(contact_id, [])


class FakeRetriever(BaseRetriever):
    def __init__(self, documents: list[RelevantDocument] | None = None):
        self.documents = documents or []
        self.queries: list[tuple[str, str | None]] = []

    async def search(self, user_id, query, limit=5, category=None):
        self.queries.append((query, category))
        return self.documents[:limit]


class FakeLLM(BaseLLMProvider):
    """Returns scripted responses in order and records every request."""

    def __init__(self, *responses: LLMResponse | Exception):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def chat(self, messages, tools=None, temperature=0.7, max_output_tokens=1000):
        self.calls.append({"messages": list(messages), "tools": tools})
        if not self.responses:
            return LLMResponse(content="")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def providers():
    return Providers(email=FakeEmail(), calendar=FakeCalendar(), crm=FakeCrm())


@pytest.fixture
def retriever():
    return FakeRetriever()


@pytest.fixture
def task_service():
    return TaskService(test_engine)


@pytest.fixture
def ctx(providers, retriever, task_service):
    return ToolContext(
        engine=test_engine,
        providers=providers,
        tasks=task_service,
        retriever=retriever,
        timezone="UTC",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def user_id():
    return seed_user()


@pytest.fixture
def llm():
    return FakeLLM()


async def noop_housekeeping(*args, **kwargs):
    """No-op replacement for housekeeping_loop."""
    return


@pytest.fixture
def client(providers, llm):
    """FastAPI TestClient with the database, providers and LLM replaced."""
    from advisor.api import deps

    with (
        patch("advisor.main.init_db"),
        patch("advisor.main.housekeeping_loop", noop_housekeeping),
    ):
        from advisor.main import app

        app.dependency_overrides[get_session] = get_test_session
        app.dependency_overrides[deps.get_engine] = lambda: test_engine
        app.dependency_overrides[deps.get_providers] = lambda: providers
        app.dependency_overrides[deps.get_llm] = lambda: llm

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()
