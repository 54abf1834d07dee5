"""
FastAPI routes for the DocSpace workspace.

The browser mounts panels here and renders the views they return.

Endpoints:
- POST   /projects/{pid}/pages/{page}/form              — mount a page's form panel
- GET    /projects/{pid}/pages/{page}/form              — current form view
- PATCH  /projects/{pid}/pages/{page}/form              — apply several edits
- PUT    /projects/{pid}/pages/{page}/form/fields/{key} — apply one edit
- POST   /projects/{pid}/pages/{page}/form/save         — save the form
- DELETE /projects/{pid}/pages/{page}/form              — unmount the form panel
- POST   /projects/{pid}/chat                           — mount the chat panel
- GET    /projects/{pid}/chat                           — current chat view
- POST   /projects/{pid}/chat/messages                  — send a message
- POST   /projects/{pid}/chat/refresh                   — refetch chat history
- DELETE /projects/{pid}/chat                           — unmount the chat panel
- POST   /panels/{panel_id}/notifications/{nid}/dismiss — dismiss a notification
- GET    /health                                        — health check
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from docspace.core.form_state import FormValueError, UnknownFieldError
from docspace.core.session import chat_panel_id, form_panel_id
from docspace.panels.chat_panel import ChatPanel, ChatPanelView
from docspace.panels.form_panel import FormPanel, FormPanelView

logger = logging.getLogger(__name__)

router = APIRouter()

# These will be injected by the app factory
_panel_store = None
_backend = None
_generator = None


def configure_routes(panel_store, backend, generator=None):
    """Inject the panel store, backend client and optional field generator.

    Called by the app factory during startup.
    """
    global _panel_store, _backend, _generator
    _panel_store = panel_store
    _backend = backend
    _generator = generator


# --- Request / Response Models ---


class EditRequest(BaseModel):
    """Request body for a single field edit."""

    value: Any = None


class BulkEditRequest(BaseModel):
    """Request body for several field edits at once."""

    values: dict[str, Any]


class SaveResponse(BaseModel):
    """Response body for the form save endpoint."""

    saved: bool
    form: FormPanelView


class SendMessageRequest(BaseModel):
    """Request body for sending a chat message."""

    text: str


class SendMessageResponse(BaseModel):
    """Response body for the chat send endpoint."""

    sent: bool
    chat: ChatPanelView


# --- Helpers ---


def _require_store():
    if _panel_store is None or _backend is None:
        raise HTTPException(status_code=500, detail="Server not properly configured")
    return _panel_store


def _get_panel(panel_id: str, panel_type: type):
    panel = _require_store().get(panel_id)
    if panel is None or not isinstance(panel, panel_type):
        raise HTTPException(status_code=404, detail=f"Panel '{panel_id}' is not mounted")
    return panel


def _apply_edits(panel: FormPanel, values: dict[str, Any]) -> None:
    try:
        panel.edit_many(values)
    except UnknownFieldError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except FormValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))


# --- Form panel endpoints ---


@router.post("/projects/{project_id}/pages/{page_number}/form", response_model=FormPanelView)
async def mount_form_panel(project_id: int, page_number: int):
    """Mount (or re-mount) the form panel for a page.

    Waits for text extraction, field generation and saved data, so this
    can take as long as the AI generator does.
    """
    store = _require_store()
    panel = FormPanel(_backend, project_id, page_number, generator=_generator)
    store.put(form_panel_id(project_id, page_number), panel)
    await panel.mount()
    return panel.view()


@router.get("/projects/{project_id}/pages/{page_number}/form", response_model=FormPanelView)
async def get_form_panel(project_id: int, page_number: int):
    """Return the current view of a mounted form panel."""
    panel = _get_panel(form_panel_id(project_id, page_number), FormPanel)
    return panel.view()


@router.patch("/projects/{project_id}/pages/{page_number}/form", response_model=FormPanelView)
async def edit_form_fields(project_id: int, page_number: int, request: BulkEditRequest):
    """Apply several edits; all or nothing."""
    panel = _get_panel(form_panel_id(project_id, page_number), FormPanel)
    _apply_edits(panel, request.values)
    return panel.view()


@router.put(
    "/projects/{project_id}/pages/{page_number}/form/fields/{field_key}",
    response_model=FormPanelView,
)
async def edit_form_field(project_id: int, page_number: int, field_key: str, request: EditRequest):
    """Apply one edit, coerced to the field's kind."""
    panel = _get_panel(form_panel_id(project_id, page_number), FormPanel)
    _apply_edits(panel, {field_key: request.value})
    return panel.view()


@router.post("/projects/{project_id}/pages/{page_number}/form/save", response_model=SaveResponse)
async def save_form(project_id: int, page_number: int):
    """Save the form. A failed save keeps the edits and adds a notification."""
    panel = _get_panel(form_panel_id(project_id, page_number), FormPanel)
    saved = await panel.save()
    return SaveResponse(saved=saved, form=panel.view())


@router.delete("/projects/{project_id}/pages/{page_number}/form")
async def unmount_form_panel(project_id: int, page_number: int):
    """Unmount a form panel, discarding its state."""
    removed = _require_store().remove(form_panel_id(project_id, page_number))
    return {"success": removed, "message": "Panel unmounted" if removed else "Panel not found"}


# --- Chat panel endpoints ---


@router.post("/projects/{project_id}/chat", response_model=ChatPanelView)
async def mount_chat_panel(project_id: int):
    """Mount (or re-mount) the chat panel for a document."""
    store = _require_store()
    panel = ChatPanel(_backend, project_id)
    store.put(chat_panel_id(project_id), panel)
    await panel.mount()
    return panel.view()


@router.get("/projects/{project_id}/chat", response_model=ChatPanelView)
async def get_chat_panel(project_id: int):
    """Return the current chat view, including messages still pending."""
    panel = _get_panel(chat_panel_id(project_id), ChatPanel)
    return panel.view()


@router.post("/projects/{project_id}/chat/messages", response_model=SendMessageResponse)
async def send_chat_message(project_id: int, request: SendMessageRequest):
    """Send a user message and return the reconciled chat view."""
    panel = _get_panel(chat_panel_id(project_id), ChatPanel)
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Message text cannot be empty")
    confirmed = await panel.send_message(request.text)
    return SendMessageResponse(sent=confirmed is not None, chat=panel.view())


@router.post("/projects/{project_id}/chat/refresh", response_model=ChatPanelView)
async def refresh_chat(project_id: int):
    """Refetch the chat history (pending messages are kept)."""
    panel = _get_panel(chat_panel_id(project_id), ChatPanel)
    await panel.refresh()
    return panel.view()


@router.delete("/projects/{project_id}/chat")
async def unmount_chat_panel(project_id: int):
    """Unmount the chat panel, discarding its history."""
    removed = _require_store().remove(chat_panel_id(project_id))
    return {"success": removed, "message": "Panel unmounted" if removed else "Panel not found"}


# --- Shared endpoints ---


@router.post("/panels/{panel_id}/notifications/{notification_id}/dismiss")
async def dismiss_notification(panel_id: str, notification_id: int):
    """Dismiss one notification of a mounted panel."""
    panel = _require_store().get(panel_id)
    if panel is None:
        raise HTTPException(status_code=404, detail=f"Panel '{panel_id}' is not mounted")
    return {"success": panel.dismiss(notification_id)}


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    panel_count = _panel_store.count() if _panel_store else 0
    return {
        "status": "healthy",
        "mounted_panels": panel_count,
    }
