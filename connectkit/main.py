"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from connectkit.api import auth, contacts, users
from connectkit.api.errors import register_exception_handlers
from connectkit.config import get_settings
from connectkit.context import AppContext
from connectkit.log import configure_logging

settings = get_settings()
configure_logging(settings)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect backing stores before serving and release them on shutdown."""
    # A context may be installed up front (tests, embedding); otherwise build one
    context = getattr(app.state, "context", None)
    owns_context = context is None
    if owns_context:
        context = AppContext(settings)
        app.state.context = context

    context.startup()
    logger.info(f"ConnectKit API started ({context.settings.environment})")
    try:
        yield
    finally:
        if owns_context:
            context.shutdown()
            del app.state.context


app = FastAPI(
    title="ConnectKit API",
    description="Multi-tenant contacts management API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)

register_exception_handlers(app, hide_internal_errors=settings.is_production)

# Register routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(contacts.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "environment": settings.environment}
