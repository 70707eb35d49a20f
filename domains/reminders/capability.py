"""OS-level notification capability for the browser channel.

The dispatcher only raises a notification when permission is "granted";
anything else means the channel is silently skipped.
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from config import NOTIFIER_WEBHOOK_URL
from logger import logger
from . import config

GRANTED = "granted"
DENIED = "denied"
DEFAULT = "default"
UNSUPPORTED = "unsupported"


class NotificationCapability(ABC):
    """Permission-gated OS notification surface."""

    @property
    @abstractmethod
    def permission(self) -> str:
        ...

    @abstractmethod
    async def request_permission(self) -> str:
        ...

    @abstractmethod
    async def show(self, title: str, body: str, tag: str) -> None:
        """Raise a notification. Notifications sharing a tag replace each other."""


class UnsupportedCapability(NotificationCapability):
    """No OS notification surface available."""

    @property
    def permission(self) -> str:
        return UNSUPPORTED

    async def request_permission(self) -> str:
        return UNSUPPORTED

    async def show(self, title: str, body: str, tag: str) -> None:
        return None


class WebhookCapability(NotificationCapability):
    """Posts notifications to a local desktop notifier (ntfy-style endpoint).

    Permission starts as "default" and becomes "granted" once the endpoint
    answers a probe, "denied" if it does not.
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or NOTIFIER_WEBHOOK_URL
        self._permission = DEFAULT if self.url else UNSUPPORTED

    @property
    def permission(self) -> str:
        return self._permission

    async def request_permission(self) -> str:
        if not self.url:
            return UNSUPPORTED
        if self._permission == GRANTED:
            return GRANTED
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(self.url, timeout=config.REMOTE_TIMEOUT_SECONDS)
                self._permission = GRANTED if response.status_code < 500 else DENIED
        except httpx.HTTPError as e:
            logger.warning(f"Notifier endpoint unreachable: {e}")
            self._permission = DENIED
        logger.info(f"Notification permission: {self._permission}")
        return self._permission

    async def show(self, title: str, body: str, tag: str) -> None:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.url,
                content=body.encode("utf-8"),
                headers={"Title": title.encode("utf-8"), "X-Tag": tag.encode("utf-8")},
                timeout=config.REMOTE_TIMEOUT_SECONDS
            )
            response.raise_for_status()


def build_capability(url: Optional[str] = None) -> NotificationCapability:
    if url or NOTIFIER_WEBHOOK_URL:
        return WebhookCapability(url)
    return UnsupportedCapability()
