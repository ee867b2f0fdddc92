"""
Main FastAPI application.
This is the entry point for the backend server.
"""
from contextlib import asynccontextmanager
from typing import Optional
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import select
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import ChatError
from app.core.logging_config import setup_logging
from app.core.security import get_password_hash
from app.db.database import Database
from app.models.user import User, UserRole
from app.services.completion_client import CompletionClient
from app.api.endpoints import auth, conversations, users


async def ensure_admin(database: Database, settings: Settings) -> None:
    """Create the configured admin account if it does not exist yet."""
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        return

    async with database.session() as session:
        result = await session.execute(select(User).where(User.email == settings.ADMIN_EMAIL))
        if result.scalar_one_or_none():
            return
        session.add(User(
            email=settings.ADMIN_EMAIL,
            username=settings.ADMIN_USERNAME,
            hashed_password=get_password_hash(settings.ADMIN_PASSWORD),
            role=UserRole.ADMIN
        ))
        await session.commit()
    logger.info(f"Created admin account {settings.ADMIN_EMAIL}")


async def handle_chat_error(request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration to use; defaults to the environment-loaded settings

    Returns:
        FastAPI app whose database, completion client and settings live on app.state
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for startup and shutdown events.
        """
        setup_logging(settings.LOG_LEVEL)
        logger.info(f"Starting {settings.APP_NAME} {settings.VERSION} ({settings.ENVIRONMENT})")

        database = Database(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            echo=settings.DEBUG,
        )
        await database.open()
        await database.create_all()
        await ensure_admin(database, settings)
        logger.info("Database initialized")

        app.state.settings = settings
        app.state.database = database
        app.state.completion_client = CompletionClient.from_settings(settings)

        yield

        logger.info("Shutting down")
        await database.close()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        description="Copper and copper alloy expert chat backend",
        lifespan=lifespan
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ChatError, handle_chat_error)

    # Include routers
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(conversations.router)

    @app.get("/")
    async def root():
        """Root endpoint - service banner"""
        return {
            "message": settings.APP_NAME,
            "version": settings.VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured HOST and PORT."""
    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
