from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deepsearch.api.routes import deep_search, sessions
from deepsearch.config import settings
from deepsearch.services import logger as log_service
from deepsearch.services import runner


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    pending = runner.active_runs()
    if pending:
        log_service.log_event(
            event_type="shutdown",
            message="Shutting down with research runs still in flight",
            pending=pending,
        )


app = FastAPI(
    title="Deep Search",
    description="Multi-step web research with streamed progress and recoverable snapshots",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Message-Id"],
)

# Routes
app.include_router(deep_search.router)
app.include_router(sessions.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "deepsearch"}
