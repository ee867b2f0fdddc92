"""
Conversation endpoints: streaming chat, listing, message history and deletion.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from app.core.exceptions import ForbiddenError, NotFoundError
from app.models.user import User
from app.schemas.chat import (
    StreamChatRequest,
    ConversationListResponse,
    ConversationMessagesResponse,
    ConversationSummary,
    MessageResponse
)
from app.api.deps import get_current_user, get_conversation_store, get_stream_relay
from app.services.conversation_store import ConversationStore
from app.services.stream_relay import StreamRelay
from app.utils.sse import SSE_HEADERS

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _positive_int(value: Optional[str], default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


router = APIRouter(prefix="/api/conversations", tags=["Conversations"])


@router.post(
    "",
    response_class=StreamingResponse,
    responses={status.HTTP_200_OK: {"content": {"text/event-stream": {}}}},
)
async def send_message(
    request: StreamChatRequest,
    current_user: User = Depends(get_current_user),
    relay: StreamRelay = Depends(get_stream_relay)
):
    """
    Send a message and stream the assistant's reply as server-sent events.

    Starts a new conversation when no conversationId is given. Validation,
    ownership and persistence failures that happen before the stream opens
    are returned as ordinary JSON errors.
    """
    exchange = await relay.open_exchange(
        current_user.id,
        request.content,
        conversation_id=request.conversation_id,
        title=request.title,
    )
    return StreamingResponse(
        relay.stream(exchange),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    page: Optional[str] = Query(None),
    page_size: Optional[str] = Query(None, alias="pageSize"),
    current_user: User = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store)
):
    """
    Get the current user's conversations, most recently updated first.
    Invalid or missing paging values fall back to the defaults.
    """
    page = _positive_int(page, 1)
    page_size = min(_positive_int(page_size, DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)

    rows, total = await store.list_conversations(current_user.id, page, page_size)
    return ConversationListResponse(
        items=[ConversationSummary.model_validate(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{conversation_id}/messages", response_model=ConversationMessagesResponse)
async def get_conversation_messages(
    conversation_id: str,
    limit: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store)
):
    """
    Get the messages of a conversation in chronological order.

    Args:
        conversation_id: Conversation to read
        limit: Return only the most recent N messages; invalid values return all
    """
    owner_id = await store.get_conversation_owner(conversation_id)
    if owner_id is None:
        raise NotFoundError("conversation not found")
    if owner_id != current_user.id:
        raise ForbiddenError("forbidden")

    messages = await store.recent_messages(conversation_id, limit)
    return ConversationMessagesResponse(
        conversation_id=conversation_id,
        messages=[MessageResponse.model_validate(message) for message in messages],
    )


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store)
):
    """
    Delete a conversation together with its messages.
    """
    deleted = await store.delete_conversation(conversation_id, current_user.id)
    if not deleted:
        raise NotFoundError("conversation not found or not owned")
    return {"success": True}
