"""FastAPI dependencies: caller identity and the assistant's service graph."""

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.engine import Engine
from sqlmodel import Session

from advisor.core.config import settings
from advisor.core.database import engine as default_engine
from advisor.core.database import get_session
from advisor.core.rate_limit import RateLimiterRegistry
from advisor.models.user import User
from advisor.services.agent import Agent
from advisor.services.context import ContextAssembler
from advisor.services.integrations.base import Providers
from advisor.services.integrations.google import GmailProvider, GoogleCalendarProvider, GoogleService
from advisor.services.integrations.hubspot import HubSpotProvider
from advisor.services.llm import get_llm_provider
from advisor.services.llm.base import BaseLLMProvider
from advisor.services.retrieval import KeywordRetriever
from advisor.services.sync import SyncService
from advisor.services.tasks import TaskService
from advisor.services.tools.base import ToolContext
from advisor.services.tools.registry import create_default_registry


def build_providers(engine: Engine, limiters: RateLimiterRegistry) -> Providers:
    google = GoogleService(engine)
    return Providers(
        email=GmailProvider(google, limiters),
        calendar=GoogleCalendarProvider(google, limiters, engine),
        crm=HubSpotProvider(engine, limiters),
    )


def build_agent(engine: Engine, providers: Providers, llm: BaseLLMProvider) -> Agent:
    retriever = KeywordRetriever(engine)
    ctx = ToolContext(
        engine=engine,
        providers=providers,
        tasks=TaskService(engine),
        retriever=retriever,
    )
    return Agent(
        engine,
        llm,
        create_default_registry(ctx),
        ContextAssembler(engine, retriever),
    )


def get_engine() -> Engine:
    return default_engine


def get_llm(request: Request) -> BaseLLMProvider:
    """One provider per app, built on first use."""
    llm = getattr(request.app.state, "llm", None)
    if llm is None:
        llm = request.app.state.llm = get_llm_provider(settings)
    return llm


def get_limiters(request: Request) -> RateLimiterRegistry:
    """The app-wide registry created in the lifespan, so all requests share one budget per service."""
    return request.app.state.limiters


def get_providers(
    engine: Engine = Depends(get_engine),
    limiters: RateLimiterRegistry = Depends(get_limiters),
) -> Providers:
    return build_providers(engine, limiters)


def get_agent(
    engine: Engine = Depends(get_engine),
    providers: Providers = Depends(get_providers),
    llm: BaseLLMProvider = Depends(get_llm),
) -> Agent:
    return build_agent(engine, providers, llm)


def get_task_service(engine: Engine = Depends(get_engine)) -> TaskService:
    return TaskService(engine)


def get_sync_service(
    engine: Engine = Depends(get_engine),
    providers: Providers = Depends(get_providers),
) -> SyncService:
    return SyncService(engine, providers)


def get_current_user(
    x_user_id: int | None = Header(None),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the caller from the ``X-User-Id`` header set by the auth proxy."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    user = session.get(User, x_user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
