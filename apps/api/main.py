"""
CollabOS - FastAPI Backend
Workspaces, tasks and the coin/tier economy behind them.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, stripe_configured, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    auth,
    coins,
    workspaces,
    projects,
    tasks,
    automations,
    notifications,
    ai,
    subscription,
    chat,
    search,
)
from services.webhook_events import get_webhook_event_cache


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting CollabOS API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    get_webhook_event_cache()
    print(f"🪝 Webhook dedup store: {settings.WEBHOOK_EVENT_STORE} (ttl {settings.WEBHOOK_EVENT_TTL_SECONDS}s)")
    if not stripe_configured():
        print("💳 Stripe not configured; only coin-paid plans are available.")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="CollabOS API",
    description="Collaborative workspaces with a coin and tier economy",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(coins.router, prefix="/coins", tags=["Coins"])
app.include_router(workspaces.router, prefix="/workspaces", tags=["Workspaces"])
app.include_router(projects.router, prefix="/projects", tags=["Projects"])
app.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
app.include_router(automations.router, prefix="/automations", tags=["Automations"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(ai.router, prefix="/ai", tags=["AI"])
app.include_router(subscription.router, prefix="/subscription", tags=["Subscription"])
app.include_router(chat.router, prefix="/chat", tags=["Chat"])
app.include_router(search.router, prefix="/search", tags=["Search"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "CollabOS API",
        "version": "0.1.0",
        "status": "running"
    }
