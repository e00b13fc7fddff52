"""Puffin local sync service."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from puffin.core.config import settings
from puffin.core.scheduler import shutdown_scheduler, start_scheduler
from puffin.routes import auth, sync
from puffin.sync.context import build_sync_context

# Configure logging
settings.log_dir.mkdir(parents=True, exist_ok=True)
log_file = settings.log_dir / "latest.log"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    filename=str(log_file),
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    # Startup
    logger.info("Starting Puffin sync service")
    ctx = build_sync_context(settings)
    app.state.sync_context = ctx
    start_scheduler(ctx.orchestrator, settings.remote_check_interval_minutes)
    yield
    # Shutdown: let an in-flight push or pull finish before the process exits
    shutdown_scheduler()
    await ctx.orchestrator.wait_until_idle()
    ctx.database.dispose()
    logger.info("Puffin sync service shut down")


app = FastAPI(
    title=settings.app_name,
    description="Backs up the Puffin database to Google Drive and restores it on other devices",
    version="0.1.0",
    lifespan=lifespan,
)

# The UI may be served from a different origin than the service
origins = (
    ["*"]
    if settings.allowed_origins == "*"
    else [o.strip() for o in settings.allowed_origins.split(",")]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(sync.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}
