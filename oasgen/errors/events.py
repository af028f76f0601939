"""
Observer list for error lifecycle events.

Each ``ErrorHandler`` owns one ``ErrorEventBus``; there is no process-wide bus.
"""

import inspect
import itertools
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger


class ErrorEventType(str, Enum):
    HANDLED = "error:handled"
    RATE_LIMITED = "error:rate_limited"
    RECOVERED = "error:recovered"
    FATAL = "error:fatal"
    ALL = "*"


@dataclass
class ErrorEvent:
    """Event published by the error handler."""

    type: ErrorEventType
    error: Any
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventCallback = Callable[[ErrorEvent], Union[None, Awaitable[None]]]


@dataclass
class _Subscription:
    id: str
    event_type: ErrorEventType
    callback: EventCallback


class ErrorEventBus:
    """
    Publish-subscribe list of error event callbacks.

    Callbacks subscribed to ``ErrorEventType.ALL`` receive every event.
    Callback failures are logged and never propagate to the publisher.
    """

    def __init__(self, name: str = "errors"):
        self.name = name
        self._subscriptions: Dict[ErrorEventType, List[_Subscription]] = defaultdict(list)
        self._index: Dict[str, _Subscription] = {}
        self._ids = itertools.count()
        self._lock = threading.RLock()

    def subscribe(self, event_type: Union[ErrorEventType, str], callback: EventCallback) -> str:
        """
        Subscribe a callback to an event type.

        Returns:
            Subscription ID for unsubscribing
        """
        event_type = ErrorEventType(event_type)
        with self._lock:
            sub_id = f"{self.name}_{next(self._ids)}"
            subscription = _Subscription(id=sub_id, event_type=event_type, callback=callback)
            self._subscriptions[event_type].append(subscription)
            self._index[sub_id] = subscription
        logger.debug(f"Subscribed {sub_id} to {event_type.value}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            subscription = self._index.pop(subscription_id, None)
            if subscription is None:
                return False
            self._subscriptions[subscription.event_type].remove(subscription)
        logger.debug(f"Unsubscribed {subscription_id}")
        return True

    def publish(self, event: ErrorEvent) -> List[Awaitable[Any]]:
        """
        Deliver ``event`` to matching callbacks.

        Returns:
            Awaitables returned by async callbacks, for the caller to await
        """
        with self._lock:
            targets = list(self._subscriptions.get(event.type, []))
            if event.type is not ErrorEventType.ALL:
                targets.extend(self._subscriptions.get(ErrorEventType.ALL, []))

        pending: List[Awaitable[Any]] = []
        for subscription in targets:
            try:
                result = subscription.callback(event)
            except Exception as e:
                logger.error(f"Error in subscriber '{subscription.id}' for {event.type.value}: {e}")
                continue
            if inspect.isawaitable(result):
                pending.append(result)
        return pending

    def subscriber_count(self, event_type: Optional[Union[ErrorEventType, str]] = None) -> int:
        with self._lock:
            if event_type is None:
                return len(self._index)
            return len(self._subscriptions.get(ErrorEventType(event_type), []))

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()
            self._index.clear()
