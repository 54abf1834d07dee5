"""
Shared plumbing for workspace panel controllers.

A panel owns its state for the lifetime of one mount. Every await in a
controller may resolve after the panel was unmounted (or re-mounted), so
controllers capture a mount token before awaiting and drop the result
if the token is no longer current.
"""

import itertools
import logging
from enum import Enum

from pydantic import BaseModel, Field

from docspace.core.utils import utc_now

logger = logging.getLogger(__name__)

_notification_ids = itertools.count(1)


class PanelStatus(str, Enum):
    """Lifecycle of a panel's content."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    EMPTY = "empty"
    ERROR = "error"
    UNMOUNTED = "unmounted"


class NotificationLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """A dismissible message shown over a panel (a toast)."""

    id: int = Field(default_factory=lambda: next(_notification_ids))
    title: str
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    created_at: str = Field(default_factory=lambda: utc_now().isoformat())


class PanelController:
    """Base class for panels: mount tokens and notifications."""

    def __init__(self) -> None:
        self.status: PanelStatus = PanelStatus.IDLE
        self.error: str | None = None
        self.notifications: list[Notification] = []
        self._mount_token = 0

    # -----------------------------------------------------------------
    # Mount lifecycle
    # -----------------------------------------------------------------

    @property
    def mounted(self) -> bool:
        return self.status is not PanelStatus.UNMOUNTED and self._mount_token > 0

    def _begin_mount(self) -> int:
        """Start a new mount and return its token."""
        self._mount_token += 1
        self.status = PanelStatus.LOADING
        self.error = None
        return self._mount_token

    def _is_current(self, token: int) -> bool:
        """True if ``token`` still belongs to the live mount."""
        return token == self._mount_token and self.status is not PanelStatus.UNMOUNTED

    def unmount(self) -> None:
        """Discard panel state. Late results from in-flight calls become no-ops."""
        self._mount_token += 1
        self.status = PanelStatus.UNMOUNTED
        self.notifications = []
        self._discard_state()

    def _discard_state(self) -> None:
        """Drop panel-owned state (overridden by subclasses)."""

    # -----------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------

    def notify(
        self,
        title: str,
        message: str,
        level: NotificationLevel = NotificationLevel.INFO,
    ) -> Notification:
        notification = Notification(title=title, message=message, level=level)
        self.notifications.append(notification)
        return notification

    def dismiss(self, notification_id: int) -> bool:
        """Dismiss a notification. Returns True if it existed."""
        before = len(self.notifications)
        self.notifications = [n for n in self.notifications if n.id != notification_id]
        return len(self.notifications) < before

    def _fail(self, title: str, message: str) -> None:
        """Put the panel in the ERROR state and raise a notification."""
        self.status = PanelStatus.ERROR
        self.error = message
        self.notify(title, message, NotificationLevel.ERROR)
