"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select

from . import __version__
from .config import settings
from .database import async_session, init_db, close_db
from .exceptions import PulsewatchError
from .models import Setting
from .routers import monitors_router, notify_router, settings_router
from .services.passive import passive_ingestion_service
from .services.scheduler import scheduler_service
from .services.telegram import telegram_service

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def start_telegram():
    """Start the chat listener if a bot token has been stored."""
    async with async_session() as session:
        result = await session.execute(
            select(Setting).where(Setting.key == "telegram_bot_token")
        )
        setting = result.scalar_one_or_none()

    telegram_service.set_handler(passive_ingestion_service.handle_chat_message)
    telegram_service.start(setting.value if setting else "")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info(f"Starting Pulsewatch {__version__}")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Periodic checks; the first pass runs right away when run_on_startup is set
    scheduler_service.start()

    await start_telegram()

    yield

    # Shutdown
    scheduler_service.stop()
    await telegram_service.stop()
    await close_db()
    logger.info("Shutdown complete")


async def pulsewatch_error_handler(request: Request, exc: PulsewatchError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Pulsewatch",
        description="Uptime checks, incidents and alerts - HTTP, TCP, status API and passive chat monitors",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PulsewatchError, pulsewatch_error_handler)

    app.include_router(monitors_router)
    app.include_router(notify_router)
    app.include_router(settings_router)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "telegram": telegram_service.connected,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
