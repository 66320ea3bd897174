import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError

from conduit.config import settings
from conduit.database import Base, engine
from conduit.errors import (
    ConstraintViolationError,
    InvalidArgumentError,
    RecordNotFoundError,
    is_connectivity_failure,
)
from conduit.middleware import RequestStatsMiddleware
from conduit.routers import articles, tags, users

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if settings.AUTO_CREATE_SCHEMA:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")
    yield
    # Shutdown
    await engine.dispose()

app = FastAPI(
    title="Conduit API",
    description="Articles, comments, favorites and follows over a transactional store layer",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(RequestStatsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(articles.router)
app.include_router(users.router)
app.include_router(tags.router)


# ---------------------------------------------------------------------------
# Store error -> HTTP status
# ---------------------------------------------------------------------------

@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request: Request, exc: RecordNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})

@app.exception_handler(InvalidArgumentError)
async def invalid_argument_handler(request: Request, exc: InvalidArgumentError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})

@app.exception_handler(ConstraintViolationError)
async def constraint_violation_handler(request: Request, exc: ConstraintViolationError):
    return JSONResponse(status_code=409, content={"detail": "Constraint violation"})

@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    if is_connectivity_failure(exc):
        logger.error("Database unavailable: %s", exc)
        return JSONResponse(status_code=503, content={"detail": "Database unavailable"})
    logger.exception("Unhandled database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal database error"})

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
