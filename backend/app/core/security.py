"""
Security utilities: bcrypt password hashing and the JWT access tokens that
carry a user's id and role.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from jose import jwt, JWTError
from loguru import logger
from passlib.context import CryptContext
from app.core.config import settings


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(
    user_id: int,
    role: str,
    expires_delta: Optional[timedelta] = None,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> str:
    """
    Create a signed JWT for a user.

    Args:
        user_id: Stored in the `sub` claim as a string
        role: `user` or `admin`, stored in the `role` claim
        expires_delta: Lifetime; defaults to ACCESS_TOKEN_EXPIRE_MINUTES
        secret_key: Signing key, defaults to settings.SECRET_KEY
        algorithm: Signing algorithm, defaults to settings.ALGORITHM

    Returns:
        Encoded JWT token string
    """
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user_id),
        "role": role,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, secret_key or settings.SECRET_KEY, algorithm=algorithm or settings.ALGORITHM)


def decode_access_token(
    token: str,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    """
    Verify signature and expiry of a token.

    Returns:
        The claims, or None when the token is malformed, expired or signed
        with another key
    """
    try:
        return jwt.decode(token, secret_key or settings.SECRET_KEY, algorithms=[algorithm or settings.ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected access token: {e}")
        return None
