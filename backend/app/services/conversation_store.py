"""
Conversation Store - persistence of conversations and messages.

Every operation checks out its own session (and therefore its own pooled
connection) and releases it before returning, so no connection is held while
a caller waits on something else, such as the completion service.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceError
from app.db.database import Database
from app.models.conversation import Conversation, DEFAULT_TITLE, new_conversation_id
from app.models.message import Message, MessageRole


def normalize_limit(limit: Optional[int]) -> Optional[int]:
    """Return a positive limit, or None meaning the whole history."""
    if limit is None:
        return None
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return None
    return limit if limit >= 1 else None


class ConversationStore:
    """
    Data-layer access to conversations and their messages.

    Ownership is enforced here for destructive operations: a conversation is
    only deleted when the requesting user owns it.
    """

    def __init__(self, database: Database):
        self.database = database

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.database.session() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Conversation store failure: {e}")
            raise PersistenceError("database unavailable") from e

    async def create_conversation(self, user_id: int, title: Optional[str] = None) -> Conversation:
        conversation = Conversation(
            id=new_conversation_id(),
            user_id=user_id,
            title=title or DEFAULT_TITLE,
        )
        async with self._session() as session:
            session.add(conversation)
            await session.commit()
            await session.refresh(conversation)
        logger.debug(f"Created conversation {conversation.id} for user {user_id}")
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        async with self._session() as session:
            return await session.get(Conversation, conversation_id)

    async def get_conversation_owner(self, conversation_id: str) -> Optional[int]:
        """Return the owning user id, or None when the conversation does not exist."""
        async with self._session() as session:
            result = await session.execute(
                select(Conversation.user_id).where(Conversation.id == conversation_id)
            )
            return result.scalar_one_or_none()

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> Message:
        """Insert a message and bump the conversation's updated_at in one transaction."""
        message = Message(conversation_id=conversation_id, role=role, content=content)
        async with self._session() as session:
            session.add(message)
            await session.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(updated_at=func.now())
            )
            await session.commit()
            await session.refresh(message)
        return message

    async def recent_messages(self, conversation_id: str, limit: Optional[int]) -> List[Message]:
        """
        Most recent messages of a conversation, returned oldest first.

        Args:
            conversation_id: Conversation to read
            limit: Maximum number of messages; None or a non-positive value
                returns the full history

        Returns:
            Messages in ascending creation order
        """
        limit = normalize_limit(limit)
        if limit is None:
            return await self.list_messages(conversation_id)

        async with self._session() as session:
            result = await session.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            )
            messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def list_messages(self, conversation_id: str) -> List[Message]:
        """Full history of a conversation in ascending order."""
        async with self._session() as session:
            result = await session.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at, Message.id)
            )
            return list(result.scalars().all())

    async def list_conversations(
        self,
        user_id: int,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[Sequence[dict], int]:
        """
        One page of a user's conversations, most recently updated first.

        Returns:
            Tuple of (rows, total) where every row carries the conversation
            fields plus the content of its latest message
        """
        offset = (page - 1) * page_size
        last_message = (
            select(Message.content)
            .where(Message.conversation_id == Conversation.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
            .correlate(Conversation)
            .scalar_subquery()
        )
        async with self._session() as session:
            result = await session.execute(
                select(
                    Conversation.id,
                    Conversation.title,
                    Conversation.created_at,
                    Conversation.updated_at,
                    last_message.label("last_message"),
                )
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.updated_at.desc(), Conversation.created_at.desc())
                .limit(page_size)
                .offset(offset)
            )
            rows = [dict(row) for row in result.mappings().all()]

            total = await session.scalar(
                select(func.count()).select_from(Conversation).where(Conversation.user_id == user_id)
            )
        return rows, total or 0

    async def delete_conversation(self, conversation_id: str, user_id: int) -> bool:
        """
        Delete a conversation and all its messages as one unit.

        Returns:
            False when the conversation does not exist or is not owned by user_id
        """
        async with self._session() as session:
            owner = await session.scalar(
                select(Conversation.user_id).where(Conversation.id == conversation_id)
            )
            if owner is None or owner != user_id:
                return False
            await session.execute(delete(Message).where(Message.conversation_id == conversation_id))
            await session.execute(
                delete(Conversation)
                .where(Conversation.id == conversation_id)
                .where(Conversation.user_id == user_id)
            )
            await session.commit()
        logger.info(f"Deleted conversation {conversation_id} for user {user_id}")
        return True
