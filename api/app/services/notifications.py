"""
Outbound push notifications.

The engines never call a notifier directly. ``NotificationDispatcher`` is an
EventBus listener: it turns committed lifecycle events into (title, body)
pairs and hands them to a ``Notifier``. Delivery failures are logged and
dropped; the state change that triggered them stands.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import httpx

from ..config import (
    NOTIFICATIONS_ENABLED,
    ONESIGNAL_API_KEY,
    ONESIGNAL_API_URL,
    ONESIGNAL_APP_ID,
    ONESIGNAL_TIMEOUT_SECONDS,
)
from ..gateway import Eq, PersistenceGateway
from . import events as ev
from .profiles import display_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    user_id: str
    title: str
    body: str
    data: dict[str, Any] | None = None


class Notifier(Protocol):
    def send(self, user_id: str, title: str, body: str, data: dict[str, Any] | None = None) -> bool: ...


class LoggingNotifier:
    """Development notifier: logs and remembers what would have been pushed."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, user_id: str, title: str, body: str, data: dict[str, Any] | None = None) -> bool:
        self.sent.append(Notification(user_id=str(user_id), title=title, body=body, data=data))
        logger.info("[NOTIFY] %s <- %s: %s", user_id, title, body)
        return True


class OneSignalNotifier:
    def __init__(
        self,
        app_id: str = ONESIGNAL_APP_ID,
        api_key: str = ONESIGNAL_API_KEY,
        *,
        api_url: str = ONESIGNAL_API_URL,
        timeout: float = ONESIGNAL_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        if not app_id or not api_key:
            raise ValueError("OneSignal app id and api key are required")
        self.app_id = app_id
        self.api_key = api_key
        self.api_url = api_url
        self.client = client or httpx.Client(timeout=timeout)

    def payload(self, user_id: str, title: str, body: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {
            "app_id": self.app_id,
            "include_external_user_ids": [str(user_id)],
            "channel_for_external_user_ids": "push",
            "headings": {"en": title},
            "contents": {"en": body},
        }
        if data:
            out["data"] = data
        return out

    def send(self, user_id: str, title: str, body: str, data: dict[str, Any] | None = None) -> bool:
        try:
            response = self.client.post(
                self.api_url,
                json=self.payload(user_id, title, body, data),
                headers={"Authorization": f"Basic {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("[NOTIFY] push to %s failed: %s", user_id, exc)
            return False
        logger.info("[NOTIFY] push to %s accepted (%s)", user_id, title)
        return True

    def close(self) -> None:
        self.client.close()


# kind -> (title, body with name, body without name)
TEMPLATES: dict[str, tuple[str, str, str]] = {
    ev.MATCH_REQUESTED: ("New Match Request", "{name} wants to connect with you!", "Someone wants to connect with you!"),
    ev.MATCH_ACCEPTED: ("Match accepted", "{name} accepted your match request!", "Your match request was accepted!"),
    ev.MATCH_LIKED: ("New Like", "{name} liked this chat!", "Your match liked this chat!"),
    ev.REVEAL_REQUESTED: ("Reveal request", "{name} wants to reveal Instagram with you", "Your match wants to reveal Instagram"),
    ev.REVEAL_COMPLETED: ("Instagram revealed", "You and {name} can now see each other's Instagram", "Instagram handles are now revealed"),
    ev.MESSAGE_SENT: ("New Message", "{name} sent you a message", "You have a new message"),
    ev.LETTER_SENT: ("New Letter", "{name} sent you a letter", "Someone sent you a letter"),
    ev.LETTER_LIKED: ("Letter liked", "{name} liked your letter", "Someone liked your letter"),
    ev.LETTERS_MATCHED: ("It's a match!", "You and {name} liked each other's letters", "Someone liked your letter back"),
    ev.CHAT_STARTED: ("New Chat", "{name} started a chat with you", "Someone started a chat with you"),
}


def build_notification(event: ev.LifecycleEvent, actor_name: str | None) -> Notification | None:
    template = TEMPLATES.get(event.kind)
    if template is None or not event.recipient_id:
        return None
    title, named, anonymous = template
    body = named.format(name=actor_name) if actor_name else anonymous
    data = {"type": event.kind, "entity_id": event.entity_id, **event.payload}
    return Notification(user_id=str(event.recipient_id), title=title, body=body, data=data)


class NotificationDispatcher:
    """EventBus listener. With an executor, delivery runs off the request thread."""

    def __init__(
        self,
        notifier: Notifier,
        gateway: PersistenceGateway | None = None,
        *,
        enabled: bool = NOTIFICATIONS_ENABLED,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.notifier = notifier
        self.gateway = gateway
        self.enabled = enabled
        self.executor = executor

    def _actor_name(self, actor_id: str) -> str | None:
        if self.gateway is None:
            return None
        try:
            rows = self.gateway.select("profiles", [Eq("id", actor_id)], limit=1)
        except Exception:
            logger.warning("[NOTIFY] could not load name for %s", actor_id, exc_info=True)
            return None
        name = display_name(rows[0] if rows else None, "")
        return name or None

    def _deliver(self, notification: Notification) -> None:
        try:
            self.notifier.send(notification.user_id, notification.title, notification.body, notification.data)
        except Exception:
            logger.warning("[NOTIFY] delivery to %s raised", notification.user_id, exc_info=True)

    def __call__(self, event: ev.LifecycleEvent) -> None:
        if not self.enabled or event.kind not in TEMPLATES or not event.recipient_id:
            return
        notification = build_notification(event, self._actor_name(event.actor_id))
        if notification is None:
            return
        if self.executor is not None:
            self.executor.submit(self._deliver, notification)
        else:
            self._deliver(notification)


def build_notifier(factory: Callable[[], Notifier] | None = None) -> Notifier:
    if factory is not None:
        return factory()
    if ONESIGNAL_APP_ID and ONESIGNAL_API_KEY:
        return OneSignalNotifier()
    logger.info("[NOTIFY] OneSignal not configured, using logging notifier")
    return LoggingNotifier()
