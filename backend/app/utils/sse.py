"""
Server-Sent Events framing for the conversation stream.

Every function returns one complete, self-terminated frame so that frames
from different producers can never interleave mid-event.
"""
import json
from typing import Any, Dict

KEEP_ALIVE = ": keep-alive\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def started_event(conversation_id: str) -> str:
    return encode_event({"started": True, "conversationId": conversation_id})


def chunk_event(text: str) -> str:
    return encode_event({"chunk": text})


def done_event(conversation_id: str, message_id: int) -> str:
    return encode_event({"done": True, "conversationId": conversation_id, "messageId": message_id})


def error_event(message: str) -> str:
    return encode_event({"error": message})
