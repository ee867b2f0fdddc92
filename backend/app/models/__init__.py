"""
Models package - exports all database models.
"""
from app.models.user import User, UserRole
from app.models.conversation import Conversation
from app.models.message import Message, MessageRole

__all__ = [
    "User",
    "UserRole",
    "Conversation",
    "Message",
    "MessageRole",
]
