"""Decido: Main FastAPI Application.

A collaborative decision engine: time-staged consent decisions, consensus,
majority and nuanced votes, closed automatically at their deadline.
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorResponse
from .services import EngineError

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # Startup - skip init_db in production (migrations own the schema)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning("Could not initialize database: %s", e)
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Decido API

    Collaborative decisions that move through time-bounded stages and close
    with a computed result.

    ### Key Features

    - **Consent decisions**: clarifications, opinions, amendments and objections,
      each stage a fixed share of the voting window.
    - **Result engine**: consensus, consent, majority, supermajority,
      nuanced (majority judgment) and advisory decisions.
    - **Automatic closure**: at the deadline, on full participation, or as soon
      as everyone consented.

    ### Authentication

    Endpoints require a JWT in the `Authorization: Bearer <token>` header,
    except public-link ballots. The closure scan is triggered with
    `Authorization: Bearer <CRON_SECRET>`.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(EngineError)
async def engine_exception_handler(request: Request, exc: EngineError):
    """Engine errors that escaped a route's own translation."""
    from .api.errors import to_http_exception

    http_exc = to_http_exception(exc)
    return JSONResponse(
        status_code=http_exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            message=str(exc),
        ).model_dump(),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    error_detail = str(exc)
    # In development/debug mode, include full traceback
    if settings.debug or settings.environment != "production":
        error_detail = f"{str(exc)}\n{traceback.format_exc()}"

    logger.error("Unhandled exception: %s", error_detail)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"An unexpected error occurred: {str(exc)[:200]}",
            details=[],
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "decido.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
