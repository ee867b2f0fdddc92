"""
Message model for storing individual chat messages.
"""
from sqlalchemy import BigInteger, Column, Integer, String, Text, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from app.db.database import Base


class MessageRole(str, enum.Enum):
    """Enum for message roles"""
    USER = "user"
    ASSISTANT = "assistant"


class Message(Base):
    """
    Message table to store individual messages within conversations.
    Messages are never updated after they are inserted.

    Fields:
        id: Primary key (monotonic sequence)
        conversation_id: Foreign key to parent conversation
        role: user or assistant
        content: The actual message content
        created_at: Timestamp when message was created
    """
    __tablename__ = "messages"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    conversation_id = Column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = Column(
        Enum(MessageRole, name="message_role", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")

    def to_prompt(self) -> dict[str, str]:
        """Role/content pair as sent to the completion service."""
        return {"role": self.role.value, "content": self.content}

    def __repr__(self):
        content_preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"<Message(id={self.id}, role={self.role}, content='{content_preview}')>"
