"""
User-facing notifications.

Every mutation ends in exactly one notification: a confirmation on success,
or a destructive one naming the failed action and the reason.
The presentation layer subscribes and renders them as toasts.
"""

from collections import deque
from typing import Callable

import structlog

from finance_tracker.models.audit import Notification


NotificationListener = Callable[[Notification], None]


class Notifier:
    """Fan-out of notifications to whoever is displaying them."""

    def __init__(self, history_size: int = 50):
        self._listeners: list[NotificationListener] = []
        self._history: deque[Notification] = deque(maxlen=history_size)
        self._logger = structlog.get_logger(__name__)

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, notification: Notification) -> Notification:
        self._history.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                self._logger.exception("notification_listener_failed", title=notification.title)
        return notification

    def success(self, title: str, description: str) -> Notification:
        return self.notify(Notification(title=title, description=description))

    def error(self, title: str, description: str) -> Notification:
        return self.notify(
            Notification(title=title, description=description, variant="destructive")
        )

    @property
    def history(self) -> list[Notification]:
        return list(self._history)
