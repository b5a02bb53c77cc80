"""
Notification collaborators

The engine emits notifications for grabs, imports and failures and never
waits for them: Notifier.notify() spawns the delivery on the task
supervisor and returns immediately. Delivery errors are logged by the
supervisor.

Implementations:
    - LogNotifier: writes notifications to the application log
    - DiscordNotifier: Discord webhook with color-coded embeds (httpx)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from acquirarr.config import Config
from acquirarr.services.background import TaskSupervisor, get_task_supervisor

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    GRAB = "grab"
    DOWNLOAD_COMPLETE = "download_complete"
    IMPORT_COMPLETE = "import_complete"
    DOWNLOAD_FAILED = "download_failed"


@dataclass(frozen=True)
class Notification:
    event: NotificationEvent
    title: str
    message: str
    media_type: Optional[str] = None
    media_title: Optional[str] = None


class Notifier(ABC):
    """Fire-and-forget notification sink."""

    def __init__(self, supervisor: Optional[TaskSupervisor] = None):
        self.supervisor = supervisor or get_task_supervisor()

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Deliver one notification. Returns True on success."""

    def notify(
        self,
        event: NotificationEvent,
        title: str,
        message: str,
        media_type: Optional[str] = None,
        media_title: Optional[str] = None,
    ) -> None:
        """Schedule delivery and return without waiting."""
        notification = Notification(event, title, message, media_type, media_title)
        self.supervisor.spawn(self.send(notification), name=f"notify:{event.value}")


class LogNotifier(Notifier):

    async def send(self, notification: Notification) -> bool:
        logger.info(
            f"[{notification.event.value}] {notification.title}: {notification.message}"
        )
        return True


class DiscordNotifier(Notifier):
    """
    Discord webhook notifier.

    Embeds are color-coded by event; HTTP 204 means delivered.
    """

    COLORS = {
        NotificationEvent.GRAB: 0x0099FF,
        NotificationEvent.DOWNLOAD_COMPLETE: 0x00CC66,
        NotificationEvent.IMPORT_COMPLETE: 0x00FF00,
        NotificationEvent.DOWNLOAD_FAILED: 0xFF0000,
    }

    def __init__(self, webhook_url: str, timeout: float = None,
                 supervisor: Optional[TaskSupervisor] = None):
        super().__init__(supervisor)
        self.webhook_url = webhook_url
        self.timeout = timeout or Config.NOTIFICATION_TIMEOUT

    def build_embed(self, notification: Notification) -> Dict[str, Any]:
        embed = {
            "title": notification.title,
            "description": notification.message,
            "color": self.COLORS.get(notification.event, 0x0099FF),
            "timestamp": datetime.utcnow().isoformat(),
        }
        fields = []
        if notification.media_title:
            fields.append({"name": "Title", "value": notification.media_title, "inline": True})
        if notification.media_type:
            fields.append({"name": "Type", "value": notification.media_type, "inline": True})
        if fields:
            embed["fields"] = fields
        return embed

    async def send(self, notification: Notification) -> bool:
        payload = {"username": Config.APP_TITLE, "embeds": [self.build_embed(notification)]}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.webhook_url, json=payload)

        if response.status_code == 204:
            logger.debug(f"Discord notification sent: {notification.title}")
            return True
        if response.status_code == 429:
            logger.warning("Discord rate limited the notification webhook")
            return False
        logger.error(f"Discord webhook failed: HTTP {response.status_code}")
        return False


def build_notifier(webhook_url: Optional[str] = None,
                   supervisor: Optional[TaskSupervisor] = None) -> Notifier:
    """Discord when a webhook is configured, log output otherwise."""
    if webhook_url:
        return DiscordNotifier(webhook_url, supervisor=supervisor)
    return LogNotifier(supervisor=supervisor)
