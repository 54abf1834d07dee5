"""
Async client for the document backend's REST API.

The backend owns every piece of persistent state: projects, pages, the
extracted page text, AI form generation, saved form data and chat
sessions. This client implements the collaborators the panel
controllers depend on, and nothing more.

Endpoints used:
- GET  /projects/{pid}/pages/{page}/text          — extracted page text
- POST /projects/{pid}/pages/{page}/form/generate — AI field definitions
- GET  /projects/{pid}/pages/{page}/form          — saved form data (404 = none)
- POST /projects/{pid}/pages/{page}/form          — save form data
- POST /projects/{pid}/chat/session               — get or create a chat session
- GET  /chat/sessions/{sid}                       — session and its history
- POST /chat/sessions/{sid}/messages              — send a user message
"""

import logging
import os
from typing import Any

import httpx
from dotenv import load_dotenv

from docspace.core.chat_history import ChatMessage, ChatSession, parse_server_message
from docspace.core.utils import parse_timestamp, utc_now

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "http://localhost:8000"

# Form generation waits on the AI model and can take a while
DEFAULT_TIMEOUT_SECONDS = 120.0


class BackendError(Exception):
    """Raised when a backend call fails.

    Attributes:
        status_code: The HTTP status, or None for transport failures.
        message: A human-readable error message suitable for a notification.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def extract_error_message(response: httpx.Response) -> str:
    """Build the most useful error message from a failed response.

    Understands FastAPI validation errors (``detail`` as a list of
    ``{loc, msg}``), plain string ``detail``, and ``{"error": ...}``
    bodies. Falls back to the reason phrase.
    """
    fallback = f"HTTP error! status: {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or fallback

    if isinstance(body, str) and body:
        return body
    if not isinstance(body, dict):
        return fallback

    detail = body.get("detail")
    if isinstance(detail, list) and detail:
        parts = []
        for item in detail:
            if not isinstance(item, dict):
                parts.append(str(item))
                continue
            loc = ".".join(str(p) for p in item.get("loc", []))
            msg = item.get("msg", "")
            parts.append(f"{loc}: {msg}" if loc else str(msg))
        return "; ".join(parts)
    if isinstance(detail, str) and detail:
        return detail

    error = body.get("error")
    if isinstance(error, str) and error:
        return error

    return fallback


class BackendClient:
    """Thin async wrapper around the document backend.

    Args:
        base_url: Backend root URL. Defaults to DOCSPACE_API_BASE_URL.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        base_url = base_url or os.getenv("DOCSPACE_API_BASE_URL", DEFAULT_API_BASE_URL)
        if timeout is None:
            timeout = float(os.getenv("DOCSPACE_API_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -----------------------------------------------------------------
    # Pages and forms
    # -----------------------------------------------------------------

    async def get_page_text(self, project_id: int, page_number: int) -> str:
        """Return the extracted text of a page (possibly empty)."""
        data = await self._request("GET", f"/projects/{project_id}/pages/{page_number}/text")
        if not isinstance(data, dict):
            return ""
        return data.get("text_content") or ""

    async def generate_form_fields(self, project_id: int, page_number: int) -> Any:
        """Ask the backend to generate field definitions for a page.

        The result is returned untouched: it is untrusted AI output and
        is validated by the field-schema translator.
        """
        return await self._request(
            "POST", f"/projects/{project_id}/pages/{page_number}/form/generate"
        )

    async def get_form_data(self, project_id: int, page_number: int) -> str | None:
        """Return the saved form data JSON string, or None if never saved."""
        try:
            data = await self._request("GET", f"/projects/{project_id}/pages/{page_number}/form")
        except BackendError as e:
            if e.status_code == 404:
                return None
            raise
        if not isinstance(data, dict):
            return None
        return data.get("data")

    async def save_form_data(self, project_id: int, page_number: int, data: str) -> dict[str, Any]:
        """Persist a serialized FormState for a page."""
        result = await self._request(
            "POST",
            f"/projects/{project_id}/pages/{page_number}/form",
            json={"data": data},
        )
        return result if isinstance(result, dict) else {}

    # -----------------------------------------------------------------
    # Chat
    # -----------------------------------------------------------------

    async def get_chat_session_id(self, project_id: int) -> str | None:
        """Get (or create) the chat session for a project.

        Returns None when the backend answers without a session id.
        """
        data = await self._request("POST", f"/projects/{project_id}/chat/session")
        if not isinstance(data, dict):
            return None
        session_id = data.get("session_id") or data.get("id")
        return str(session_id) if session_id else None

    async def get_chat_history(self, session_id: str) -> ChatSession:
        """Fetch a chat session with its messages in server order."""
        data = await self._request("GET", f"/chat/sessions/{session_id}")
        if isinstance(data, list):
            # Older backends return the bare message list
            data = {"messages": data}
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected chat history payload for session '{session_id}'")

        messages: list[ChatMessage] = []
        for item in data.get("messages") or []:
            try:
                messages.append(parse_server_message(item))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed chat message in session %s: %s", session_id, e)

        return ChatSession(
            id=str(data.get("id") or session_id),
            title=data.get("title") or "Document chat",
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            messages=messages,
        )

    async def send_chat_message(self, session_id: str, text: str) -> ChatMessage:
        """Send a user message and return the server-confirmed copy."""
        data = await self._request(
            "POST",
            f"/chat/sessions/{session_id}/messages",
            json={"message": text, "is_user_message": 1},
        )
        if not isinstance(data, dict):
            raise BackendError("Backend did not return the saved chat message")
        try:
            return parse_server_message(data)
        except (ValueError, TypeError) as e:
            raise BackendError(f"Backend returned an invalid chat message: {e}") from e

    # -----------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and decode its JSON body.

        Raises:
            BackendError: On transport failures and non-2xx responses.
        """
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise BackendError(f"Could not reach the document backend: {e}") from e

        if response.is_error:
            message = extract_error_message(response)
            logger.warning("%s %s returned %d: %s", method, path, response.status_code, message)
            raise BackendError(message, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"Backend returned invalid JSON for {method} {path}") from e
