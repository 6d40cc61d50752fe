import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from advisor.api import chat, conversations, events, instructions, tasks
from advisor.api.deps import build_providers
from advisor.core.config import settings
from advisor.core.database import engine, init_db
from advisor.core.errors import TaskNotFoundError, WorkflowError
from advisor.core.rate_limit import RateLimiterRegistry
from advisor.services.housekeeping import housekeeping_loop
from advisor.services.sync import SyncService


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    init_db()

    app.state.limiters = RateLimiterRegistry()

    # Start background housekeeping
    sync = SyncService(engine, build_providers(engine, app.state.limiters))
    housekeeping_task = asyncio.create_task(housekeeping_loop(engine, sync))

    yield

    # Cancel housekeeping on shutdown
    housekeeping_task.cancel()
    try:
        await housekeeping_task
    except asyncio.CancelledError:
        pass


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TaskNotFoundError)
async def task_not_found(request: Request, exc: TaskNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(WorkflowError)
async def workflow_error(request: Request, exc: WorkflowError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
app.include_router(instructions.router, prefix="/api/instructions", tags=["instructions"])
app.include_router(events.router, prefix="/api/events", tags=["events"])


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
