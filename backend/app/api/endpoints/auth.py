"""
Authentication endpoints for registration, login and the current user.
"""
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from app.core.config import Settings
from app.core.security import verify_password, get_password_hash, create_access_token
from app.models.user import User, UserRole
from app.schemas.auth import UserRegister, UserLogin, UserResponse, TokenResponse
from app.api.deps import get_current_user, get_db, get_settings


router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def issue_token(user: User, settings: Settings) -> str:
    """Create a signed access token carrying the user id and role."""
    return create_access_token(
        user.id,
        user.role.value,
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    Register a new user. Self registration always creates a regular user.

    Args:
        user_data: User registration data
        db: Database session
        settings: Application settings (token signing)

    Returns:
        Token and the created user (without password)

    Raises:
        HTTPException: If the email is already registered
    """
    result = await db.execute(select(User).where(User.email == user_data.email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="email already registered"
        )

    new_user = User(
        username=user_data.username,
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
        role=UserRole.USER
    )

    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)
    logger.info(f"Registered user {new_user.id}")

    return TokenResponse(
        token=issue_token(new_user, settings),
        user=UserResponse.model_validate(new_user)
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    user_data: UserLogin,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    Login endpoint - authenticates user and returns JWT token.

    Raises:
        HTTPException: If credentials are invalid or the account is inactive
    """
    result = await db.execute(select(User).where(User.email == user_data.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(user_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="user account is inactive"
        )

    await db.execute(
        update(User)
        .where(User.id == user.id)
        .values(last_login=func.now(), login_count=User.login_count + 1)
    )
    await db.commit()
    await db.refresh(user)
    logger.info(f"User {user.id} logged in")

    return TokenResponse(
        token=issue_token(user, settings),
        user=UserResponse.model_validate(user)
    )


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """
    Get current authenticated user information.
    """
    return UserResponse.model_validate(current_user)
