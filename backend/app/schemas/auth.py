"""
Pydantic schemas for authentication and user administration.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, EmailStr, Field
from app.models.user import UserRole


class UserRegister(BaseModel):
    """Request schema for self registration (always role user)"""
    email: EmailStr
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=6)


class UserLogin(BaseModel):
    """Request schema for user login"""
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserCreate(UserRegister):
    """Request schema for an admin creating a user"""
    role: UserRole = UserRole.USER


class UserUpdate(BaseModel):
    """Request schema for an admin updating a user; omitted fields are untouched"""
    username: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None


class PasswordChange(BaseModel):
    current_password: Optional[str] = Field(None, alias="currentPassword")
    new_password: str = Field(..., alias="newPassword", min_length=6)

    model_config = {"populate_by_name": True}


class UserIdsRequest(BaseModel):
    """Request schema carrying a list of user ids (bulk delete, export)"""
    user_ids: Optional[List[int]] = Field(None, alias="userIds")

    model_config = {"populate_by_name": True}


class UserResponse(BaseModel):
    """Response schema for user data (without password)"""
    id: int
    username: str
    email: str
    role: UserRole
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    last_login: Optional[datetime] = Field(None, alias="lastLogin")
    login_count: int = Field(0, alias="loginCount")

    model_config = {"from_attributes": True, "populate_by_name": True}  # Allows ORM model conversion


class TokenResponse(BaseModel):
    """Response schema for register/login"""
    token: str
    user: UserResponse


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    page: int
    page_size: int = Field(alias="pageSize")

    model_config = {"populate_by_name": True}


class UserStatsResponse(BaseModel):
    total: int
    admins: int
    users: int
    new_users_7d: int


class UserExportResponse(BaseModel):
    data: List[UserResponse]
    count: int
    exported_at: datetime = Field(alias="exportedAt")

    model_config = {"populate_by_name": True}


class MessageOut(BaseModel):
    """Plain acknowledgement"""
    message: str
    deleted_count: Optional[int] = Field(None, alias="deletedCount")

    model_config = {"populate_by_name": True}
