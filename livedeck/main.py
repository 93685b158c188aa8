"""
LiveDeck - Main Application Entry Point

Local presentation server: keeps presenter and audience views in lockstep
and runs the deck's code blocks live.
"""
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from livedeck import __version__
from livedeck.core import get_settings, init_debug_mode, is_debug_mode, get_debug_status, setup_logging
from livedeck.api.routes import deck, executions, navigation, sync
from livedeck.services.presentation import DeckWatcher, get_presentation_runtime, set_presentation_runtime

load_dotenv()

# Initialize the debug mode state (after .env has been read)
init_debug_mode()

setup_logging(logging.DEBUG if is_debug_mode() else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown."""
    settings = get_settings()

    # Startup
    logger.info(f"🚀 Starting {settings.app_name} {__version__}...")
    settings.ensure_directories()

    if is_debug_mode():
        logger.info("🐛 Debug mode is \033[92mACTIVE\033[0m")

    runtime = get_presentation_runtime()
    logger.info(f"📂 Deck: \033[93m{settings.deck_path}\033[0m ({len(runtime.deck)} slides)")
    logger.info(f"🧰 Drivers: \033[96m{', '.join(sorted(settings.drivers))}\033[0m")
    if settings.persist_recordings:
        logger.info(f"💾 Recordings saved to \033[93m{settings.recordings_dir}\033[0m")

    watcher = None
    if settings.deck_watch and settings.deck_path is not None:
        watcher = DeckWatcher(settings.deck_path, runtime.reload, interval=settings.deck_watch_interval)
        watcher.start(current_deck_id=runtime.deck.id)

    yield

    # Shutdown
    logger.info(f"👋 Shutting down {settings.app_name}...")
    if watcher is not None:
        await watcher.stop()
    await runtime.shutdown()
    set_presentation_runtime(None)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Live presentation runtime with synchronized presenter and audience views",
        version=__version__,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Include API routers
    app.include_router(deck.router, tags=["deck"])
    app.include_router(navigation.router, tags=["navigation"])
    app.include_router(executions.router, tags=["executions"])
    app.include_router(sync.router, tags=["sync"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        runtime = get_presentation_runtime()
        debug_status = get_debug_status()

        return {
            "status": "healthy",
            "app_name": settings.app_name,
            "deck_id": runtime.deck.id,
            "clients": runtime.hub.client_counts(),
            "debug_mode": debug_status["debug_mode"],
            "execution_count": debug_status["execution_count"],
        }

    return app


# Create the application instance
app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "livedeck.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
