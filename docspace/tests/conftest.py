"""
Shared test fixtures and helpers for the DocSpace test suite.

Provides FakeBackend — an in-memory stand-in for the document backend
that implements the same collaborator methods as BackendClient, with
knobs for failures and for holding sends in flight.
"""

import asyncio
from typing import Any

import pytest

from docspace.client.backend import BackendError
from docspace.core.chat_history import ChatMessage, ChatSession, parse_server_message

SAMPLE_FIELDS = {
    "Full Name": {"type": "text"},
    "Comments": {"type": "multi-line text"},
    "Subscribe": {"type": "checkbox"},
    "Contact Method": {"type": "radio", "options": ["Email", "Phone"]},
    "Country": {"type": "dropdown", "options": ["France", "Japan", "Peru"]},
}


class FakeBackend:
    """In-memory document backend.

    Attributes worth poking from tests:
        fields:        what generate_form_fields returns (or raises, if an Exception)
        form_data:     saved JSON string, or None
        session_id:    what get_chat_session_id returns (or raises)
        messages:      wire-format chat messages held by the "server"
        fail_save:     exception raised by save_form_data
        fail_history:  exception raised by get_chat_history
        fail_texts:    chat texts whose send raises BackendError
        gates:         chat texts whose send waits on the given asyncio.Event
        history_gates: events consumed in order by get_chat_history calls; each
                       call snapshots the messages, then waits on its event
        assistant_reply: text the "assistant" appends after every user message
    """

    def __init__(
        self,
        page_text: str = "Application form. Full name: ____ Country: ____",
        fields: Any = None,
        form_data: str | None = None,
        session_id: Any = "session-1",
        messages: list[dict] | None = None,
    ):
        self.page_text = page_text
        self.fields = dict(SAMPLE_FIELDS) if fields is None else fields
        self.form_data = form_data
        self.session_id = session_id
        self.messages: list[dict] = list(messages or [])
        self.saved: list[str] = []
        self.sent: list[str] = []
        self.fail_save: Exception | None = None
        self.fail_history: Exception | None = None
        self.fail_texts: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.history_gates: list[asyncio.Event] = []
        self.assistant_reply: str | None = "The document says so."
        self.calls: list[str] = []
        self._next_id = 100

    # --- Pages and forms ---

    async def get_page_text(self, project_id: int, page_number: int) -> str:
        self.calls.append("get_page_text")
        return self.page_text

    async def generate_form_fields(self, project_id: int, page_number: int) -> Any:
        self.calls.append("generate_form_fields")
        if isinstance(self.fields, Exception):
            raise self.fields
        return self.fields

    async def get_form_data(self, project_id: int, page_number: int) -> str | None:
        self.calls.append("get_form_data")
        return self.form_data

    async def save_form_data(self, project_id: int, page_number: int, data: str) -> dict:
        self.calls.append("save_form_data")
        if self.fail_save is not None:
            raise self.fail_save
        self.saved.append(data)
        self.form_data = data
        return {"id": 1, "data": data, "page_id": page_number}

    # --- Chat ---

    async def get_chat_session_id(self, project_id: int) -> str | None:
        self.calls.append("get_chat_session_id")
        if isinstance(self.session_id, Exception):
            raise self.session_id
        return self.session_id

    async def get_chat_history(self, session_id: str) -> ChatSession:
        self.calls.append("get_chat_history")
        if self.fail_history is not None:
            raise self.fail_history
        messages = [parse_server_message(m) for m in self.messages]
        if self.history_gates:
            await self.history_gates.pop(0).wait()
        return ChatSession(id=session_id, title="Document chat", messages=messages)

    async def send_chat_message(self, session_id: str, text: str) -> ChatMessage:
        self.calls.append("send_chat_message")
        gate = self.gates.get(text)
        if gate is not None:
            await gate.wait()
        if text in self.fail_texts:
            raise BackendError("Service unavailable", status_code=503)

        self.sent.append(text)
        user_message = self._wire_message(text, is_user=True)
        self.messages.append(user_message)
        if self.assistant_reply:
            self.messages.append(self._wire_message(self.assistant_reply, is_user=False))
        return parse_server_message(user_message)

    def _wire_message(self, text: str, is_user: bool) -> dict:
        self._next_id += 1
        return {
            "id": self._next_id,
            "message": text,
            "is_user_message": 1 if is_user else 0,
            "created_at": "2024-05-01T10:00:00",
        }


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
