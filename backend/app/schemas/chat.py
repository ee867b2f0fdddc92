"""
Pydantic schemas for conversation requests and responses.
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from app.models.message import MessageRole


class StreamChatRequest(BaseModel):
    """Request schema for sending a message to a (new or existing) conversation"""
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    title: Optional[str] = Field(None, max_length=255)
    # Validated by the relay so a missing value is reported as "content required"
    content: Optional[str] = None

    model_config = {"populate_by_name": True}


class MessageResponse(BaseModel):
    """Response schema for a message"""
    id: int
    role: MessageRole
    content: str
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    model_config = {"from_attributes": True, "populate_by_name": True}


class ConversationMessagesResponse(BaseModel):
    conversation_id: str = Field(alias="conversationId")
    messages: List[MessageResponse]

    model_config = {"populate_by_name": True}


class ConversationSummary(BaseModel):
    """Response schema for one row of the conversation list"""
    id: str = Field(alias="conversationId")
    title: str
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    last_message: Optional[str] = Field(None, alias="lastMessage")

    model_config = {"from_attributes": True, "populate_by_name": True}


class ConversationListResponse(BaseModel):
    """Response schema for a page of conversations"""
    items: List[ConversationSummary]
    total: int
    page: int
    page_size: int = Field(alias="pageSize")

    model_config = {"populate_by_name": True}
