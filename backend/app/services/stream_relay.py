"""
Stream Relay - drives one client exchange from the inbound message to the
end of the server-sent event stream.

Everything up to and including the domain gate happens in open_exchange and
is reported as ordinary errors. Once stream() is iterated the response is an
event stream: `started`, then `chunk`s, then exactly one of `done` or
`error`, with keep-alive comments on a fixed interval in between.

Each exchange runs as one worker task that pushes complete frames into a
queue. The stream generator is the only consumer and the only writer to the
response; it also schedules the heartbeats and owns the worker, so when the
generator finishes or is cancelled (client disconnect) the heartbeat and the
worker stop together.
"""
import asyncio
import enum
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, List, Optional

from loguru import logger

from app.core.exceptions import ForbiddenError, NotFoundError, PersistenceError, UpstreamError, ValidationError
from app.models.conversation import TITLE_MAX_LENGTH
from app.models.message import MessageRole
from app.services.completion_client import CompletionClient, CompletionOptions
from app.services.conversation_store import ConversationStore
from app.services.domain_gate import is_in_scope
from app.utils import sse

REFUSAL_MESSAGE = (
    "Sorry, this assistant only answers questions about copper and copper alloys. "
    "Please ask about alloy grades, chemical composition, mechanical properties, "
    "heat treatment or applications of copper materials."
)

REFUSAL_MESSAGE_ZH = (
    "抱歉，本系统仅支持铜及铜合金相关问题。"
    "请咨询铜合金牌号、化学成分、力学性能、热处理工艺或应用场景等方面的内容。"
)

REFUSAL_MESSAGES = {"en": REFUSAL_MESSAGE, "zh": REFUSAL_MESSAGE_ZH}

DEFAULT_HEARTBEAT_INTERVAL = 15.0
DEFAULT_HISTORY_WINDOW = 10

Emit = Callable[[Optional[str]], None]


class ExchangeState(str, enum.Enum):
    GATED = "gated"
    BLOCKED = "blocked"
    ALLOWED = "allowed"
    PERSISTING_OUTBOUND = "persisting_outbound"
    TERMINATED = "terminated"
    ERROR = "error"


@dataclass
class Exchange:
    """In-flight state of one request/stream cycle. Never shared between exchanges."""
    conversation_id: str
    user_id: int
    content: str
    inbound_message_id: int
    in_scope: bool
    state: ExchangeState = ExchangeState.GATED
    reply_parts: List[str] = field(default_factory=list)
    assistant_message_id: Optional[int] = None

    @property
    def reply(self) -> str:
        return "".join(self.reply_parts)


class StreamRelay:
    def __init__(
        self,
        store: ConversationStore,
        completion_client: CompletionClient,
        gate: Callable[[str], bool] = is_in_scope,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        completion_options: Optional[CompletionOptions] = None,
        refusal_message: str = REFUSAL_MESSAGE
    ):
        self.store = store
        self.completion_client = completion_client
        self.gate = gate
        self.heartbeat_interval = heartbeat_interval
        self.history_window = history_window
        self.completion_options = completion_options
        self.refusal_message = refusal_message

    async def open_exchange(
        self,
        user_id: int,
        content: Optional[str],
        conversation_id: Optional[str] = None,
        title: Optional[str] = None
    ) -> Exchange:
        """
        Validate, authorize, persist the inbound message and evaluate the gate.

        Args:
            user_id: Authenticated caller
            content: Message text
            conversation_id: Existing conversation to append to; a new one is
                created when omitted
            title: Title for a new conversation; defaults to the first
                60 characters of content

        Returns:
            Exchange ready to be streamed

        Raises:
            ValidationError: content is missing or blank
            NotFoundError: conversation_id does not exist
            ForbiddenError: conversation_id belongs to another user
            PersistenceError: the store is unreachable
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("content required")

        created = not conversation_id
        if created:
            conversation = await self.store.create_conversation(
                user_id, title or content[:TITLE_MAX_LENGTH]
            )
            conversation_id = conversation.id
        else:
            owner_id = await self.store.get_conversation_owner(conversation_id)
            if owner_id is None:
                raise NotFoundError("conversation not found")
            if owner_id != user_id:
                raise ForbiddenError("forbidden")

        try:
            inbound = await self.store.append_message(conversation_id, MessageRole.USER, content)
        except PersistenceError:
            if created:
                await self._discard_conversation(conversation_id, user_id)
            raise

        in_scope = bool(self.gate(content))
        if not in_scope:
            logger.info(f"Domain gate blocked message {inbound.id} in conversation {conversation_id}")

        return Exchange(
            conversation_id=conversation_id,
            user_id=user_id,
            content=content,
            inbound_message_id=inbound.id,
            in_scope=in_scope,
        )

    async def _discard_conversation(self, conversation_id: str, user_id: int) -> None:
        """Remove a conversation created for a message that could not be stored."""
        try:
            await self.store.delete_conversation(conversation_id, user_id)
        except PersistenceError as e:
            logger.warning(f"Could not remove empty conversation {conversation_id}: {e.message}")

    async def stream(self, exchange: Exchange) -> AsyncIterator[str]:
        """Yield the SSE frames of an exchange until it terminates."""
        loop = asyncio.get_running_loop()
        frames: asyncio.Queue[Optional[str]] = asyncio.Queue()
        worker: Optional[asyncio.Task] = None
        pending: Optional[asyncio.Future] = None

        logger.info(
            f"Exchange started: conversation={exchange.conversation_id} "
            f"user={exchange.user_id} in_scope={exchange.in_scope}"
        )
        try:
            yield sse.started_event(exchange.conversation_id)
            worker = asyncio.create_task(self._run_exchange(exchange, frames.put_nowait))
            next_beat = loop.time() + self.heartbeat_interval

            while True:
                if pending is None:
                    pending = asyncio.ensure_future(frames.get())
                done, _ = await asyncio.wait({pending}, timeout=max(next_beat - loop.time(), 0))
                if not done:
                    next_beat += self.heartbeat_interval
                    if next_beat <= loop.time():
                        next_beat = loop.time() + self.heartbeat_interval
                    yield sse.KEEP_ALIVE
                    continue

                frame = pending.result()
                pending = None
                if frame is None:
                    break
                yield frame
        finally:
            for task in (pending, worker):
                if task is not None and not task.done():
                    task.cancel()
            logger.info(
                f"Exchange finished: conversation={exchange.conversation_id} state={exchange.state.value}"
            )

    async def _run_exchange(self, exchange: Exchange, emit: Emit) -> None:
        """Worker body: produce chunk/done/error frames, then the end-of-stream marker."""
        try:
            if exchange.in_scope:
                exchange.state = ExchangeState.ALLOWED
                await self._relay_completion(exchange, emit)
            else:
                exchange.state = ExchangeState.BLOCKED
                exchange.reply_parts.append(self.refusal_message)

            exchange.state = ExchangeState.PERSISTING_OUTBOUND
            message = await self.store.append_message(
                exchange.conversation_id, MessageRole.ASSISTANT, exchange.reply
            )
            exchange.assistant_message_id = message.id

            if not exchange.in_scope:
                emit(sse.chunk_event(self.refusal_message))
            emit(sse.done_event(exchange.conversation_id, message.id))
            exchange.state = ExchangeState.TERMINATED
        except (UpstreamError, PersistenceError) as e:
            exchange.state = ExchangeState.ERROR
            logger.error(f"Exchange failed in conversation {exchange.conversation_id}: {e.message}")
            emit(sse.error_event(e.message))
        except Exception:
            exchange.state = ExchangeState.ERROR
            logger.exception(f"Unexpected error in conversation {exchange.conversation_id}")
            emit(sse.error_event("internal error"))
        finally:
            emit(None)

    async def _relay_completion(self, exchange: Exchange, emit: Emit) -> None:
        """Load the context window, stream the completion and accumulate the reply."""
        window = self.history_window if self.history_window > 0 else None
        history = await self.store.recent_messages(
            exchange.conversation_id, window + 1 if window else None
        )
        context = [
            message.to_prompt()
            for message in history
            if message.id != exchange.inbound_message_id
        ]
        if window:
            context = context[-window:]
        context.append({"role": MessageRole.USER.value, "content": exchange.content})

        def on_chunk(text: str) -> None:
            exchange.reply_parts.append(text)
            emit(sse.chunk_event(text))

        await self.completion_client.stream_completion(context, on_chunk, self.completion_options)

        if not exchange.reply:
            raise UpstreamError("empty response from completion service")
