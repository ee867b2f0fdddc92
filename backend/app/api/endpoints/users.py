"""
User administration endpoints (admin only unless noted).
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, or_
from app.core.security import verify_password, get_password_hash
from app.models.user import User, UserRole
from app.models.conversation import Conversation
from app.models.message import Message
from app.schemas.auth import (
    UserCreate,
    UserUpdate,
    UserResponse,
    UserListResponse,
    UserStatsResponse,
    UserExportResponse,
    UserIdsRequest,
    PasswordChange,
    MessageOut
)
from app.api.deps import get_current_user, get_db, require_admin

DEFAULT_PAGE_SIZE = 10
EXPORT_LIMIT = 10000


router = APIRouter(prefix="/api/auth/users", tags=["Users"])


def _user_filters(search: Optional[str], role: Optional[UserRole]) -> list:
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(or_(User.username.like(pattern), User.email.like(pattern)))
    if role is not None:
        filters.append(User.role == role)
    return filters


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="user not found"
        )
    return user


def _ensure_admin_or_self(current_user: User, user_id: int) -> None:
    if not current_user.is_admin and current_user.id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="permission denied"
        )


async def _delete_users(db: AsyncSession, user_ids: List[int]) -> int:
    """
    Delete users together with their conversations and messages.

    Returns:
        Number of user rows removed
    """
    owned = select(Conversation.id).where(Conversation.user_id.in_(user_ids))
    await db.execute(delete(Message).where(Message.conversation_id.in_(owned)))
    await db.execute(delete(Conversation).where(Conversation.user_id.in_(user_ids)))
    result = await db.execute(delete(User).where(User.id.in_(user_ids)))
    await db.commit()
    return result.rowcount or 0


@router.get("", response_model=UserListResponse)
async def list_users(
    search: Optional[str] = Query(None),
    role: Optional[UserRole] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize", ge=1),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """
    List users, newest first.

    Args:
        search: Substring matched against username and email
        role: Only return users with this role
        page: 1-based page number
        page_size: Users per page
    """
    filters = _user_filters(search, role)

    result = await db.execute(
        select(User)
        .where(*filters)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    users = result.scalars().all()
    total = await db.scalar(select(func.count()).select_from(User).where(*filters))

    return UserListResponse(
        users=[UserResponse.model_validate(user) for user in users],
        total=total or 0,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=UserStatsResponse)
async def get_user_stats(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Counts of users by role and of users created in the last 7 days."""
    total = await db.scalar(select(func.count()).select_from(User))
    admins = await db.scalar(
        select(func.count()).select_from(User).where(User.role == UserRole.ADMIN)
    )
    since = datetime.now(timezone.utc) - timedelta(days=7)
    recent = await db.scalar(
        select(func.count()).select_from(User).where(User.created_at >= since)
    )
    total = total or 0
    admins = admins or 0
    return UserStatsResponse(
        total=total,
        admins=admins,
        users=total - admins,
        new_users_7d=recent or 0,
    )


@router.post("/bulk-delete", response_model=MessageOut, response_model_exclude_none=True)
async def bulk_delete_users(
    request: UserIdsRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Delete several users at once. The caller may not delete themselves."""
    if not request.user_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="userIds array required"
        )
    if admin.id in request.user_ids:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="cannot delete yourself"
        )

    deleted_count = await _delete_users(db, request.user_ids)
    logger.info(f"Admin {admin.id} deleted {deleted_count} users")
    return MessageOut(message="users deleted successfully", deleted_count=deleted_count)


@router.post("/export", response_model=UserExportResponse)
async def export_users(
    request: UserIdsRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Export the selected users, or every user when no ids are given."""
    stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
    if request.user_ids:
        stmt = stmt.where(User.id.in_(request.user_ids))
    else:
        stmt = stmt.limit(EXPORT_LIMIT)

    result = await db.execute(stmt)
    data = [UserResponse.model_validate(user) for user in result.scalars().all()]
    return UserExportResponse(
        data=data,
        count=len(data),
        exported_at=datetime.now(timezone.utc),
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Create a user with an explicit role."""
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
        role=user_data.role
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)
    logger.info(f"Admin {admin.id} created user {new_user.id} ({new_user.role.value})")

    return UserResponse.model_validate(new_user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get one user. Allowed for admins and for the user themselves."""
    _ensure_admin_or_self(current_user, user_id)
    user = await _get_user_or_404(db, user_id)
    return UserResponse.model_validate(user)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    user_data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """
    Update username, email or role. Omitted fields keep their value.

    Raises:
        HTTPException: 404 unknown user, 400 nothing to update,
            409 email already used by another user
    """
    user = await _get_user_or_404(db, user_id)

    updates = user_data.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="no fields to update"
        )

    if "email" in updates:
        result = await db.execute(
            select(User.id).where(User.email == updates["email"], User.id != user_id)
        )
        if result.scalar_one_or_none() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="email already in use"
            )

    for field, value in updates.items():
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=MessageOut, response_model_exclude_none=True)
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Delete a user and everything they own. The caller may not delete themselves."""
    if admin.id == user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="cannot delete yourself"
        )
    await _get_user_or_404(db, user_id)

    await _delete_users(db, [user_id])
    logger.info(f"Admin {admin.id} deleted user {user_id}")
    return MessageOut(message="user deleted successfully")


@router.put("/{user_id}/password", response_model=MessageOut, response_model_exclude_none=True)
async def change_password(
    user_id: int,
    request: PasswordChange,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Change a password. Admins may reset any password; everyone else may only
    change their own and must confirm the current one.
    """
    _ensure_admin_or_self(current_user, user_id)
    user = await _get_user_or_404(db, user_id)

    if not current_user.is_admin:
        if not request.current_password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="current password required"
            )
        if not verify_password(request.current_password, user.hashed_password):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="current password incorrect"
            )

    user.hashed_password = get_password_hash(request.new_password)
    await db.commit()
    return MessageOut(message="password updated successfully")
