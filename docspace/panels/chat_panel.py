"""
Chat panel controller.

One chat session per document. Sends are optimistic: the message is
appended as a pending entry before the request goes out, then swapped for
the server's copy (acknowledge) or removed (rollback). Several sends may be
in flight at once; each only ever touches its own temp id.

The assistant's reply is not part of the send response. After each
acknowledged send the panel refetches the session history, which brings
the reply in as an ordinary confirmed message.
"""

import logging
import uuid
from typing import Any

from pydantic import BaseModel

from docspace.client.backend import BackendError
from docspace.core.chat_history import (
    ChatHistory,
    ChatMessage,
    ChatSession,
    PendingChatMessage,
    acknowledge,
    append_optimistic,
    apply_refresh,
    new_temp_id,
    pending_count,
    rollback,
)
from docspace.panels.base import Notification, NotificationLevel, PanelController, PanelStatus

logger = logging.getLogger(__name__)

LOCAL_SESSION_PREFIX = "local-"


class MessageView(BaseModel):
    """One chat bubble."""

    key: str
    role: str
    content: str
    timestamp: str
    pending: bool


class ChatPanelView(BaseModel):
    """Snapshot of the chat panel for rendering."""

    project_id: int
    status: str
    error: str | None = None
    session_id: str | None = None
    session_title: str | None = None
    degraded: bool = False
    messages: list[MessageView] = []
    sending: bool = False
    notifications: list[Notification] = []


def build_message_view(entry: ChatMessage | PendingChatMessage) -> MessageView:
    if isinstance(entry, PendingChatMessage):
        key, pending = entry.temp_id, True
    else:
        key, pending = str(entry.id), False
    return MessageView(
        key=key,
        role=entry.role.value,
        content=entry.content,
        timestamp=entry.timestamp.isoformat(),
        pending=pending,
    )


class ChatPanel(PanelController):
    """Controller for a document's chat assistant.

    Args:
        backend: Collaborator for sessions, history and sends (a BackendClient).
        project_id: The document's project id.
    """

    def __init__(self, backend: Any, project_id: int):
        super().__init__()
        self._backend = backend
        self.project_id = project_id
        self.session: ChatSession | None = None
        self.history: ChatHistory = []
        self._refresh_issued = 0
        self._refresh_applied = 0
        # server id → newest refresh sequence issued when it was acknowledged
        self._recent_acks: dict[str, int] = {}

    @property
    def degraded(self) -> bool:
        return bool(self.session and self.session.degraded)

    @property
    def sending(self) -> bool:
        return pending_count(self.history) > 0

    # -----------------------------------------------------------------
    # Mount
    # -----------------------------------------------------------------

    async def mount(self) -> None:
        """Resolve the session and load its history."""
        token = self._begin_mount()
        self._discard_state()

        session_id = await self._resolve_session_id(token)
        if not self._is_current(token):
            return

        if session_id is None:
            session_id = f"{LOCAL_SESSION_PREFIX}{uuid.uuid4()}"
            logger.warning(
                "No chat session id for project %s; using local session %s",
                self.project_id,
                session_id,
            )
            self.session = ChatSession(id=session_id, degraded=True)
            self.notify(
                "Chat history unavailable",
                "Could not open a chat session for this document. "
                "Messages from earlier visits will not be shown.",
                NotificationLevel.WARNING,
            )
            self.status = PanelStatus.READY
            return

        try:
            session = await self._backend.get_chat_history(session_id)
        except BackendError as e:
            if self._is_current(token):
                self._fail("Error loading chat history", e.message)
            return
        except Exception as e:
            if self._is_current(token):
                logger.error("Unexpected error loading chat history: %s", e, exc_info=True)
                self._fail("Error loading chat history", "Could not load chat history.")
            return

        if not self._is_current(token):
            return

        self.session = session
        self.history = apply_refresh(self.history, session.messages)
        self.status = PanelStatus.READY
        logger.info(
            "Chat panel ready for project %s: session %s, %d messages",
            self.project_id,
            session.id,
            len(session.messages),
        )

    async def _resolve_session_id(self, token: int) -> str | None:
        try:
            session_id = await self._backend.get_chat_session_id(self.project_id)
        except Exception as e:
            if self._is_current(token):
                logger.warning("Chat session lookup failed for project %s: %s", self.project_id, e)
            return None
        return session_id or None

    # -----------------------------------------------------------------
    # Sending
    # -----------------------------------------------------------------

    async def send_message(self, text: str) -> ChatMessage | None:
        """Send a user message optimistically.

        The pending entry is in ``history`` before this coroutine first
        suspends. Returns the confirmed message, or None if the message
        was blank, the send failed, or the panel went away meanwhile.
        """
        content = text.strip()
        if not content:
            return None
        if self.session is None or self.status is not PanelStatus.READY:
            logger.warning("Ignoring chat send on panel in state %s", self.status.value)
            return None

        token = self._mount_token
        session_id = self.session.id
        temp_id = new_temp_id()
        self.history = append_optimistic(self.history, temp_id, content)

        try:
            confirmed = await self._backend.send_chat_message(session_id, content)
        except Exception as e:
            if not self._is_current(token):
                return None
            self.history = rollback(self.history, temp_id)
            message = e.message if isinstance(e, BackendError) else "unexpected error"
            if not isinstance(e, BackendError):
                logger.error("Unexpected error sending chat message: %s", e, exc_info=True)
            self.notify("Error", f"Failed to send your message: {message}", NotificationLevel.ERROR)
            return None

        if not self._is_current(token):
            return None

        self.history = acknowledge(self.history, temp_id, confirmed)
        self._recent_acks[str(confirmed.id)] = self._refresh_issued
        await self.refresh()
        return confirmed

    async def refresh(self) -> bool:
        """Refetch the session history to pick up assistant replies.

        Pending entries survive the refresh, as do messages acknowledged
        after the refetch was issued. A response older than one already
        applied is dropped. Returns False if the refetch failed or was
        superseded (the current history is kept).
        """
        if self.session is None or self.degraded:
            return False

        token = self._mount_token
        self._refresh_issued += 1
        seq = self._refresh_issued
        try:
            session = await self._backend.get_chat_history(self.session.id)
        except Exception as e:
            if self._is_current(token):
                if not isinstance(e, BackendError):
                    logger.error("Unexpected error refreshing chat: %s", e, exc_info=True)
                message = e.message if isinstance(e, BackendError) else "try again later"
                self.notify("Error", f"Could not refresh chat: {message}", NotificationLevel.ERROR)
            return False

        if not self._is_current(token):
            return False
        if seq < self._refresh_applied:
            logger.debug(
                "Dropping stale chat refresh %d; refresh %d already applied",
                seq,
                self._refresh_applied,
            )
            return False

        self._refresh_applied = seq
        keep_ids = [
            message_id for message_id, acked_at in self._recent_acks.items() if acked_at >= seq
        ]
        self.history = apply_refresh(self.history, session.messages, keep_ids)

        server_ids = {str(message.id) for message in session.messages}
        self._recent_acks = {
            message_id: acked_at
            for message_id, acked_at in self._recent_acks.items()
            if acked_at >= seq and message_id not in server_ids
        }
        return True

    # -----------------------------------------------------------------
    # Rendering
    # -----------------------------------------------------------------

    def view(self) -> ChatPanelView:
        return ChatPanelView(
            project_id=self.project_id,
            status=self.status.value,
            error=self.error,
            session_id=self.session.id if self.session else None,
            session_title=self.session.title if self.session else None,
            degraded=self.degraded,
            messages=[build_message_view(entry) for entry in self.history],
            sending=self.sending,
            notifications=list(self.notifications),
        )

    # -----------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------

    def _discard_state(self) -> None:
        self.session = None
        self.history = []
        self._refresh_issued = 0
        self._refresh_applied = 0
        self._recent_acks = {}
