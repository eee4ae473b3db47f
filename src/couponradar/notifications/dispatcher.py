"""
Notification dispatcher.

Sits between the matching engine and the platform presenter. Whatever happens
below it (permission denied, presenter crash, rate limit) the engine only sees a
boolean: delivered or dropped. Nothing is raised.
"""

from __future__ import annotations

import logging
import threading

from couponradar.config.settings import Settings
from couponradar.core.rate_limit import TokenBucketRateLimiter
from couponradar.domain.models import TriggerKind
from couponradar.errors import NotificationPermissionDenied
from couponradar.notifications.presenters import (
    InMemoryPresenter,
    LogPresenter,
    NotificationPresenter,
    WebhookPresenter,
)

logger = logging.getLogger(__name__)


def notification_tag(kind: TriggerKind, coupon_id: str) -> str:
    """Tag used for platform-level replace semantics, e.g. `location-<couponId>`."""
    return f"{kind}-{coupon_id}"


class NotificationDispatcher:
    def __init__(
        self,
        presenter: NotificationPresenter,
        *,
        icon: str | None = None,
        rate_limiter: TokenBucketRateLimiter | None = None,
    ):
        self._presenter = presenter
        self._icon = icon
        self._rate_limiter = rate_limiter
        self._lock = threading.Lock()

    def _ensure_permission(self) -> None:
        with self._lock:
            state = self._presenter.permission()
            if state == "default":
                state = self._presenter.request_permission()
                logger.info("Notification permission decided: %s", state)
        if state != "granted":
            raise NotificationPermissionDenied(f"notification permission is {state}")

    def dispatch(self, title: str, body: str, tag: str) -> bool:
        """Present a notification; returns False when it was dropped."""
        try:
            self._ensure_permission()
            if self._rate_limiter is not None and not self._rate_limiter.try_acquire():
                logger.warning("Notification rate limit reached; dropping %s", tag)
                return False
            self._presenter.present(title, body=body, tag=tag, icon=self._icon)
        except NotificationPermissionDenied as exc:
            logger.debug("Dropping %s: %s", tag, exc)
            return False
        except Exception as exc:
            logger.warning("Notification presentation failed for %s: %s", tag, exc)
            return False
        return True


def build_presenter(settings: Settings) -> NotificationPresenter:
    cfg = settings.notifications
    if cfg.presenter == "webhook" and cfg.webhook_url:
        return WebhookPresenter(cfg.webhook_url, timeout_seconds=cfg.webhook_timeout_seconds)
    if cfg.presenter == "memory":
        return InMemoryPresenter()
    return LogPresenter()


def build_dispatcher(settings: Settings, presenter: NotificationPresenter | None = None) -> NotificationDispatcher:
    cfg = settings.notifications
    return NotificationDispatcher(
        presenter or build_presenter(settings),
        icon=cfg.icon,
        rate_limiter=TokenBucketRateLimiter(max_per_minute=cfg.max_per_minute),
    )
