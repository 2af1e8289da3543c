"""
User-facing notification capability.

The recovery engine only ever calls the Notifier protocol. NotificationCenter
is the in-process implementation used by the host surface and the tests: it
keeps the notification records, enforces the active-notification limit and
lets the host trigger action callbacks, while rendering stays with the UI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from shortuuid import random as shortuuid_random

from toolhost_resilience.models import Clock, now_ms

logger = logging.getLogger("toolhost-resilience.notifications")


class NotificationType(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class NotificationAction:
    """A button attached to a notification."""

    id: str
    label: str
    action: Callable[[], Any]
    style: str = "secondary"


@dataclass
class Notification:
    """A notification record.

    Attributes:
        title: Short headline
        message: Body text
        type: Severity
        persistent: Whether the notification stays until dismissed
        duration: Auto-dismiss delay in milliseconds (ignored when persistent)
        actions: Buttons offered to the user
    """

    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    id: str = ""
    persistent: bool = False
    duration: int | None = None
    actions: list[NotificationAction] = field(default_factory=list)
    timestamp: int = 0
    dismissed: bool = False


class Notifier(Protocol):
    """Capability consumed by the recovery engine."""

    def show(self, notification: Notification) -> str: ...

    def success(self, title: str, message: str, **options: Any) -> str: ...

    def error(self, title: str, message: str, **options: Any) -> str: ...

    def warning(self, title: str, message: str, **options: Any) -> str: ...

    def info(self, title: str, message: str, **options: Any) -> str: ...

    def dismiss(self, notification_id: str) -> None: ...


class NotificationCenter:
    """In-memory Notifier implementation.

    Error notifications are persistent unless told otherwise. When more than
    ``max_notifications`` are active the oldest ones are dismissed. Expiry of
    non-persistent notifications is left to the renderer, which reads
    ``duration``.
    """

    DEFAULT_DURATION = 5000

    def __init__(self, max_notifications: int = 5, clock: Clock | None = None):
        self.max_notifications = max_notifications
        self._clock = clock or now_ms
        self._notifications: dict[str, Notification] = {}

    def show(self, notification: Notification) -> str:
        if not notification.id:
            notification.id = f"notification_{shortuuid_random(length=10)}"
        if notification.duration is None:
            notification.duration = self.DEFAULT_DURATION
        notification.timestamp = self._clock()
        notification.dismissed = False

        self._notifications[notification.id] = notification
        log = logger.warning if notification.type == NotificationType.ERROR else logger.info
        log(f"[{notification.type.value}] {notification.title}: {notification.message}")

        self._enforce_limit()
        return notification.id

    def _notify(self, type_: NotificationType, title: str, message: str, **options: Any) -> str:
        actions = [
            a if isinstance(a, NotificationAction) else NotificationAction(**a)
            for a in options.pop("actions", None) or []
        ]
        persistent = options.pop("persistent", type_ == NotificationType.ERROR)
        return self.show(Notification(
            title=title,
            message=message,
            type=type_,
            persistent=persistent,
            actions=actions,
            **options,
        ))

    def success(self, title: str, message: str, **options: Any) -> str:
        return self._notify(NotificationType.SUCCESS, title, message, **options)

    def error(self, title: str, message: str, **options: Any) -> str:
        return self._notify(NotificationType.ERROR, title, message, **options)

    def warning(self, title: str, message: str, **options: Any) -> str:
        return self._notify(NotificationType.WARNING, title, message, **options)

    def info(self, title: str, message: str, **options: Any) -> str:
        return self._notify(NotificationType.INFO, title, message, **options)

    def dismiss(self, notification_id: str) -> None:
        notification = self._notifications.get(notification_id)
        if notification is None or notification.dismissed:
            return
        notification.dismissed = True
        logger.debug(f"Dismissed notification {notification_id}")

    def dismiss_all(self) -> None:
        for notification_id in list(self._notifications):
            self.dismiss(notification_id)

    def update(self, notification_id: str, **updates: Any) -> bool:
        notification = self._notifications.get(notification_id)
        if notification is None:
            return False
        for key, value in updates.items():
            if not hasattr(notification, key):
                raise AttributeError(f"Notification has no field '{key}'")
            setattr(notification, key, value)
        return True

    def trigger_action(self, notification_id: str, action_id: str) -> Any:
        """Invoke the callback of ``action_id`` and dismiss the notification.

        Raises:
            KeyError: If the notification or action does not exist
        """
        notification = self._notifications.get(notification_id)
        if notification is None:
            raise KeyError(f"Notification {notification_id} not found")
        for action in notification.actions:
            if action.id == action_id:
                self.dismiss(notification_id)
                return action.action()
        raise KeyError(f"Action {action_id} not found on notification {notification_id}")

    def get_notification(self, notification_id: str) -> Notification | None:
        return self._notifications.get(notification_id)

    def get_all_notifications(self) -> list[Notification]:
        return list(self._notifications.values())

    def get_active_notifications(self) -> list[Notification]:
        return [n for n in self._notifications.values() if not n.dismissed]

    def _enforce_limit(self) -> None:
        active = self.get_active_notifications()
        excess = len(active) - self.max_notifications
        if excess <= 0:
            return
        for notification in sorted(active, key=lambda n: n.timestamp)[:excess]:
            self.dismiss(notification.id)


__all__ = [
    "NotificationType",
    "NotificationAction",
    "Notification",
    "Notifier",
    "NotificationCenter",
]
