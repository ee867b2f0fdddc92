"""
Conversation model for storing chat history.
"""
import uuid
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db.database import Base

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 60


def new_conversation_id() -> str:
    return str(uuid.uuid4())


class Conversation(Base):
    """
    Conversation table to store individual chat sessions.

    Fields:
        id: UUID string identifying the conversation
        user_id: Foreign key to user who owns this conversation
        title: Conversation title (first message excerpt)
        created_at: When conversation was created
        updated_at: Bumped every time a message is appended
    """
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=new_conversation_id)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False, default=DEFAULT_TITLE)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.id",
    )

    def __repr__(self):
        return f"<Conversation(id='{self.id}', user_id={self.user_id}, title='{self.title}')>"
