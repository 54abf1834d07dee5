"""
Store for mounted workspace panels.

A browser tab mounts panels (one form panel per open page, one chat
panel per document) through the API. Each mounted panel lives in a
PanelSession until the browser unmounts it or it sits idle past the
timeout; either way the panel is unmounted so late network results
become no-ops.
"""

import logging
import threading
import time
from typing import Any

logger = logging.getLogger(__name__)

# Default idle timeout: 30 minutes
DEFAULT_PANEL_TIMEOUT_SECONDS = 30 * 60


def form_panel_id(project_id: int, page_number: int) -> str:
    return f"form:{project_id}:{page_number}"


def chat_panel_id(project_id: int) -> str:
    return f"chat:{project_id}"


class PanelSession:
    """A single mounted panel and its idle bookkeeping."""

    def __init__(self, panel: Any):
        self.panel = panel
        self.created_at: float = time.time()
        self.last_accessed_at: float = time.time()

    def touch(self) -> None:
        """Update the last accessed timestamp."""
        self.last_accessed_at = time.time()

    def is_expired(self, timeout_seconds: int = DEFAULT_PANEL_TIMEOUT_SECONDS) -> bool:
        """Check if the panel has been idle past the timeout."""
        return (time.time() - self.last_accessed_at) > timeout_seconds


class PanelSessionStore:
    """In-memory store of mounted panels, keyed by panel id.

    Replacing or removing a panel always unmounts it.
    """

    def __init__(self, timeout_seconds: int = DEFAULT_PANEL_TIMEOUT_SECONDS):
        self._sessions: dict[str, PanelSession] = {}
        self._timeout_seconds = timeout_seconds
        self._lock = threading.RLock()

    def put(self, panel_id: str, panel: Any) -> PanelSession:
        """Register a panel, unmounting any panel it replaces."""
        session = PanelSession(panel)
        with self._lock:
            previous = self._sessions.get(panel_id)
            self._sessions[panel_id] = session
        if previous is not None and previous.panel is not panel:
            logger.info("Replacing mounted panel %s", panel_id)
            previous.panel.unmount()
        return session

    def get(self, panel_id: str) -> Any | None:
        """Return the mounted panel, or None if missing or expired.

        Expired panels are unmounted and removed.
        """
        with self._lock:
            session = self._sessions.get(panel_id)
            if session is None:
                return None
            if session.is_expired(self._timeout_seconds):
                del self._sessions[panel_id]
                expired = session
            else:
                session.touch()
                return session.panel

        logger.info("Panel %s expired after %d seconds idle", panel_id, self._timeout_seconds)
        expired.panel.unmount()
        return None

    def remove(self, panel_id: str) -> bool:
        """Unmount and remove a panel. Returns True if it existed."""
        with self._lock:
            session = self._sessions.pop(panel_id, None)
        if session is None:
            return False
        session.panel.unmount()
        return True

    def cleanup_expired(self) -> int:
        """Unmount all expired panels. Returns the count of removed panels."""
        with self._lock:
            expired = [
                (pid, session) for pid, session in self._sessions.items()
                if session.is_expired(self._timeout_seconds)
            ]
            for pid, _ in expired:
                del self._sessions[pid]
        for _, session in expired:
            session.panel.unmount()
        return len(expired)

    def clear(self) -> None:
        """Unmount every panel (used on shutdown)."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.panel.unmount()

    def count(self) -> int:
        """Return the number of mounted panels."""
        with self._lock:
            return len(self._sessions)

    def list_panel_ids(self) -> list[str]:
        """Return all mounted panel ids."""
        with self._lock:
            return list(self._sessions.keys())
