"""
Notification presentation backends.

The platform capability is modelled by `NotificationPresenter`:
- `permission()` reports "granted" / "denied" / "default" (not decided yet),
- `request_permission()` asks the user and returns the new state,
- `present()` shows a notification; a second presentation with the same tag
  replaces the first instead of stacking.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Protocol

from couponradar.core.http import post_json

logger = logging.getLogger(__name__)

NotificationPermission = Literal["granted", "denied", "default"]


class NotificationPresenter(Protocol):
    def permission(self) -> NotificationPermission: ...

    def request_permission(self) -> NotificationPermission: ...

    def present(self, title: str, *, body: str, tag: str, icon: str | None = None) -> None: ...


@dataclass(frozen=True)
class PresentedNotification:
    title: str
    body: str
    tag: str
    icon: str | None
    presented_at: datetime


class InMemoryPresenter:
    """Keeps the currently shown notifications, one per tag."""

    def __init__(self, permission: NotificationPermission = "granted", *, grant_on_request: bool = True):
        self._permission: NotificationPermission = permission
        self._grant_on_request = grant_on_request
        self._lock = threading.Lock()
        self._shown: dict[str, PresentedNotification] = {}
        self.history: list[PresentedNotification] = []
        self.permission_requests = 0

    def permission(self) -> NotificationPermission:
        return self._permission

    def request_permission(self) -> NotificationPermission:
        self.permission_requests += 1
        if self._permission == "default":
            self._permission = "granted" if self._grant_on_request else "denied"
        return self._permission

    def present(self, title: str, *, body: str, tag: str, icon: str | None = None) -> None:
        item = PresentedNotification(
            title=title, body=body, tag=tag, icon=icon, presented_at=datetime.now(timezone.utc)
        )
        with self._lock:
            self._shown[tag] = item
            self.history.append(item)

    @property
    def shown(self) -> list[PresentedNotification]:
        with self._lock:
            return list(self._shown.values())


class LogPresenter:
    """Writes notifications to the log; useful for headless runs."""

    def permission(self) -> NotificationPermission:
        return "granted"

    def request_permission(self) -> NotificationPermission:
        return "granted"

    def present(self, title: str, *, body: str, tag: str, icon: str | None = None) -> None:
        logger.info("[%s] %s: %s", tag, title, body)


class WebhookPresenter:
    """Forwards notifications as JSON to a local relay (e.g. a device bridge)."""

    def __init__(self, url: str, *, timeout_seconds: float = 5):
        if not url:
            raise ValueError("webhook url is required")
        self._url = url
        self._timeout_seconds = float(timeout_seconds)

    def permission(self) -> NotificationPermission:
        return "granted"

    def request_permission(self) -> NotificationPermission:
        return "granted"

    def present(self, title: str, *, body: str, tag: str, icon: str | None = None) -> None:
        post_json(
            self._url,
            payload={"title": title, "body": body, "tag": tag, "icon": icon},
            timeout_seconds=self._timeout_seconds,
        )
