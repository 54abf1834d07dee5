"""
Chat history reconciler with optimistic sends.

A chat panel shows the user's message as soon as it is sent, long before
the backend confirms it. Each history entry is therefore one of two
variants, discriminated by ``status``:

- PendingChatMessage: inserted optimistically, keyed by a client temp id
- ChatMessage:        confirmed by the backend, keyed by its server id

A pending entry leaves the history in exactly one of two ways:
acknowledge() swaps it for the confirmed message, rollback() removes it.
Both look entries up by temp id only, so concurrent sends never touch
each other's entries. All functions return a new list.
"""

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from docspace.core.utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"


class DuplicateTempIdError(ValueError):
    """Raised when an optimistic entry reuses a temp id already in the history."""

    def __init__(self, temp_id: str):
        self.temp_id = temp_id
        super().__init__(f"Temp id '{temp_id}' is already pending in this history")


class MessageRole(str, Enum):
    """Who wrote a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


# --- History entries ---


class ChatMessage(BaseModel):
    """A message the backend has confirmed."""

    model_config = ConfigDict(frozen=True)

    status: Literal["confirmed"] = "confirmed"
    id: int | str
    role: MessageRole
    content: str
    timestamp: datetime


class PendingChatMessage(BaseModel):
    """A message shown optimistically while its send is in flight."""

    model_config = ConfigDict(frozen=True)

    status: Literal["pending"] = "pending"
    temp_id: str
    role: MessageRole = MessageRole.USER
    content: str
    timestamp: datetime = Field(default_factory=utc_now)


HistoryEntry = Annotated[ChatMessage | PendingChatMessage, Field(discriminator="status")]
ChatHistory = list[HistoryEntry]


class ChatSession(BaseModel):
    """A document's chat session and its confirmed messages."""

    id: str
    title: str = "Document chat"
    created_at: datetime = Field(default_factory=utc_now)
    messages: list[ChatMessage] = Field(default_factory=list)
    degraded: bool = Field(
        default=False,
        description="True when the id was generated locally because the backend supplied none",
    )


def new_temp_id() -> str:
    """Generate a client-side temp id.

    The prefix keeps temp ids out of the server's id space (integers or
    backend-issued strings), so the two can never be confused.
    """
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


# -----------------------------------------------------------------
# Optimistic lifecycle
# -----------------------------------------------------------------


def append_optimistic(
    history: Sequence[HistoryEntry],
    temp_id: str,
    content: str,
    role: MessageRole = MessageRole.USER,
) -> ChatHistory:
    """Append a pending message to the end of the history.

    Call this before issuing the send request so the UI reflects the
    message immediately.

    Raises:
        DuplicateTempIdError: If ``temp_id`` is already pending.
    """
    if find_pending(history, temp_id) is not None:
        raise DuplicateTempIdError(temp_id)

    pending = PendingChatMessage(temp_id=temp_id, role=role, content=content)
    return [*history, pending]


def acknowledge(
    history: Sequence[HistoryEntry],
    temp_id: str,
    server_message: ChatMessage,
) -> ChatHistory:
    """Replace the pending entry for ``temp_id`` with the confirmed message.

    No-op if nothing is pending under ``temp_id`` (already rolled back or
    acknowledged). If a history refresh already delivered the confirmed
    message, the pending entry is simply dropped so server ids stay unique.
    """
    index = find_pending(history, temp_id)
    if index is None:
        logger.debug("Acknowledgment for '%s' ignored: no pending entry", temp_id)
        return list(history)

    if find_confirmed(history, server_message.id) is not None:
        logger.debug(
            "Message %s already in history; dropping pending entry '%s'",
            server_message.id,
            temp_id,
        )
        return [entry for i, entry in enumerate(history) if i != index]

    updated = list(history)
    updated[index] = server_message
    return updated


def rollback(history: Sequence[HistoryEntry], temp_id: str) -> ChatHistory:
    """Remove the pending entry for ``temp_id`` after a failed send.

    Confirmed entries and other pending entries are never touched.
    """
    index = find_pending(history, temp_id)
    if index is None:
        return list(history)
    return [entry for i, entry in enumerate(history) if i != index]


def apply_refresh(
    history: Sequence[HistoryEntry],
    server_messages: Iterable[ChatMessage],
    keep_ids: Iterable[int | str] = (),
) -> ChatHistory:
    """Merge a full server history into the local one.

    The server's confirmed messages replace the local confirmed ones (in
    server order, which is how assistant replies show up). Entries still
    pending stay at the end in their original order.

    Args:
        history: The current local history.
        server_messages: The session's messages as the server listed them.
        keep_ids: Ids of confirmed messages acknowledged after the server
            listing was taken. Those missing from ``server_messages`` are
            kept, in local order, between the server list and the pending
            entries.
    """
    confirmed = list(server_messages)
    server_ids = {str(message.id) for message in confirmed}
    keep = {str(message_id) for message_id in keep_ids} - server_ids

    kept = [
        entry for entry in history
        if isinstance(entry, ChatMessage) and str(entry.id) in keep
    ]
    pending = [entry for entry in history if isinstance(entry, PendingChatMessage)]
    return [*confirmed, *kept, *pending]


# -----------------------------------------------------------------
# Lookup helpers
# -----------------------------------------------------------------


def find_pending(history: Sequence[HistoryEntry], temp_id: str) -> int | None:
    """Return the index of the pending entry for ``temp_id``, or None."""
    for i, entry in enumerate(history):
        if isinstance(entry, PendingChatMessage) and entry.temp_id == temp_id:
            return i
    return None


def find_confirmed(history: Sequence[HistoryEntry], message_id: int | str) -> int | None:
    """Return the index of the confirmed entry with ``message_id``, or None."""
    for i, entry in enumerate(history):
        if isinstance(entry, ChatMessage) and str(entry.id) == str(message_id):
            return i
    return None


def pending_count(history: Sequence[HistoryEntry]) -> int:
    return sum(1 for entry in history if isinstance(entry, PendingChatMessage))


# -----------------------------------------------------------------
# Wire format
# -----------------------------------------------------------------


def parse_server_message(data: Mapping[str, Any]) -> ChatMessage:
    """Normalize a backend chat message into a ChatMessage.

    Accepts both wire shapes the backend has used:
    ``{id, message, is_user_message, created_at}`` and
    ``{id, role, content, timestamp}``.

    Raises:
        ValueError: If the message has no id or an unusable role.
    """
    message_id = data.get("id")
    if message_id is None or message_id == "":
        raise ValueError("Chat message from backend has no id")
    if is_temp_id(message_id):
        raise ValueError(f"Backend returned a client temp id as message id: {message_id!r}")

    if "role" in data:
        role = MessageRole(str(data["role"]).lower())
    else:
        role = MessageRole.USER if data.get("is_user_message") else MessageRole.ASSISTANT

    content = data.get("content", data.get("message"))
    if content is None:
        content = ""

    timestamp = parse_timestamp(data.get("timestamp") or data.get("created_at"))
    if timestamp is None:
        timestamp = utc_now()

    return ChatMessage(id=message_id, role=role, content=str(content), timestamp=timestamp)
