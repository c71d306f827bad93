"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from cutlist_intake.api.errors import app_error_handler
from cutlist_intake.api.router import api_router
from cutlist_intake.api.routes import health
from cutlist_intake.core.config import settings
from cutlist_intake.core.exceptions import AppError
from cutlist_intake.database.base import close_database, init_database
from cutlist_intake.dependencies import get_database, get_session_sweeper, get_side_effects, uses_sql_sessions
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__, level=settings.log_level)


class RootResponse(BaseModel):
    """Root endpoint response payload."""

    message: str = Field(..., description="Service status message")
    version: str = Field(..., description="Running application version")
    docs: str = Field(..., description="Path to the interactive API docs")
    health: str = Field(..., description="Path to the health check endpoint")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    LOGGER.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "llm_provider": settings.llm_provider,
        },
    )

    engine = None
    if uses_sql_sessions():
        engine, _ = get_database()
        try:
            await init_database(engine)
        except Exception as e:
            LOGGER.error(f"Database initialization failed: {e}", exc_info=True)

    sweeper = get_session_sweeper()
    sweeper.start()

    yield

    LOGGER.info("Shutting down application")
    await sweeper.stop()
    await get_side_effects().drain(timeout=5.0)
    await close_database(engine)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Extracts cutting-list parts from photos, scans and PDFs",
    lifespan=lifespan,
    debug=settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)

app.include_router(health.router, tags=["Health"])
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/", response_model=RootResponse)
async def root() -> RootResponse:
    """Root endpoint."""
    return RootResponse(
        message=f"{settings.app_name} is running",
        version=settings.app_version,
        docs="/docs",
        health="/health",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cutlist_intake.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
