"""Process-wide collaborators, exposed as FastAPI dependencies so tests can override them."""

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache

from .realtime import RealtimeHub
from .repo import SqlGateway
from .services.discovery import DiscoverySelector
from .services.events import EventBus
from .services.letters import LetterEngine
from .services.matches import MatchEngine
from .services.notifications import NotificationDispatcher, build_notifier

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def get_hub() -> RealtimeHub:
    return RealtimeHub()


@lru_cache(maxsize=None)
def get_event_bus() -> EventBus:
    return EventBus()


@lru_cache(maxsize=None)
def get_gateway() -> SqlGateway:
    return SqlGateway(hub=get_hub())


@lru_cache(maxsize=None)
def get_match_engine() -> MatchEngine:
    return MatchEngine(get_gateway(), get_event_bus())


@lru_cache(maxsize=None)
def get_letter_engine() -> LetterEngine:
    return LetterEngine(get_gateway(), get_match_engine())


@lru_cache(maxsize=None)
def get_discovery() -> DiscoverySelector:
    return DiscoverySelector(get_gateway(), get_match_engine())


@lru_cache(maxsize=None)
def install_notifications() -> NotificationDispatcher:
    dispatcher = NotificationDispatcher(
        build_notifier(),
        get_gateway(),
        executor=ThreadPoolExecutor(max_workers=4, thread_name_prefix="push"),
    )
    get_event_bus().add_listener(dispatcher)
    logger.info("[NOTIFY] dispatcher installed (%s)", type(dispatcher.notifier).__name__)
    return dispatcher
