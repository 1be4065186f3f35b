from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from betpool.config import settings
from betpool.errors import BetpoolError
from betpool.logging_setup import configure_logging
from betpool.routes.system import router as system_router
from betpool.routes.challenges import router as challenges_router
from betpool.routes.ledger import router as ledger_router
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    yield
    # Shutdown
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} Challenges API",
    version=settings.app_version,
    lifespan=lifespan,
    description="Peer wagers on challenge completion: bets, proof, voting and pari-mutuel settlement",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system_router)
app.include_router(challenges_router)
app.include_router(ledger_router)

@app.exception_handler(BetpoolError)
async def betpool_error_handler(request: Request, exc: BetpoolError):
    level = log.error if exc.status_code >= 500 else log.info
    level("request_rejected", kind=exc.kind, detail=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": exc.message})

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
