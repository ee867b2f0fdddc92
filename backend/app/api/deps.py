"""
API dependencies for authentication, database access and services.
These functions are used with FastAPI's Depends() for dependency injection.
"""
from typing import AsyncIterator
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.core.config import Settings
from app.core.security import decode_access_token
from app.db.database import Database
from app.models.user import User
from app.services.completion_client import CompletionClient, CompletionOptions
from app.services.conversation_store import ConversationStore
from app.services.stream_relay import REFUSAL_MESSAGES, StreamRelay


# HTTP Bearer token scheme for Swagger docs
security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db(database: Database = Depends(get_database)) -> AsyncIterator[AsyncSession]:
    """
    Dependency function to get a database session for the request.

    Usage in FastAPI endpoints:
        @router.get("/items")
        async def read_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with database.session() as session:
        yield session


def get_conversation_store(database: Database = Depends(get_database)) -> ConversationStore:
    return ConversationStore(database)


def get_completion_client(request: Request) -> CompletionClient:
    return request.app.state.completion_client


def get_stream_relay(
    settings: Settings = Depends(get_settings),
    store: ConversationStore = Depends(get_conversation_store),
    completion_client: CompletionClient = Depends(get_completion_client)
) -> StreamRelay:
    return StreamRelay(
        store=store,
        completion_client=completion_client,
        heartbeat_interval=settings.HEARTBEAT_INTERVAL_SECONDS,
        history_window=settings.HISTORY_WINDOW,
        completion_options=CompletionOptions(
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
            model=settings.LLM_MODEL,
        ),
        refusal_message=REFUSAL_MESSAGES[settings.RESPONSE_LANGUAGE],
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
    database: Database = Depends(get_database)
) -> User:
    """
    Dependency to get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer credentials from Authorization header
        settings: Application settings (signing key)
        database: Database used for a short-lived lookup session

    Returns:
        User: The authenticated user object

    Raises:
        HTTPException: If token is missing or invalid, or the user is unknown or inactive
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_access_token(
        credentials.credentials,
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    if payload is None:
        raise credentials_exception

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise credentials_exception

    try:
        user_id = int(user_id_str)
    except (ValueError, TypeError):
        raise credentials_exception

    # Closed before returning; streaming requests must not hold a pooled connection
    async with database.session() as session:
        result = await session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise credentials_exception

    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """
    Dependency to ensure the current user is an admin.

    Raises:
        HTTPException: 403 if the user is not an admin
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="admin access required"
        )
    return current_user
