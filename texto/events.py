"""Notifications emitted by the send and webhook paths."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

from .types import Message, SentMessageResult, WebhookProcessingResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MessageSent:
    result: SentMessageResult


@dataclass(frozen=True, slots=True)
class MessageFailed:
    result: SentMessageResult
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class MessageReceived:
    result: WebhookProcessingResult
    message: Message


@dataclass(frozen=True, slots=True)
class MessageStatusUpdated:
    result: WebhookProcessingResult
    message: Message


Event = Union[MessageSent, MessageFailed, MessageReceived, MessageStatusUpdated]

Listener = Callable[[Any], None]


class EventDispatcher:
    """Synchronous in-process event dispatcher.

    Listeners subscribe to an event class and are called in subscription
    order. Listener exceptions propagate to the dispatching caller.

    Usage::

        events = EventDispatcher()
        events.subscribe(MessageFailed, lambda event: alert(event.reason))
    """

    def __init__(self) -> None:
        self._listeners: dict[type, list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def unsubscribe(self, event_type: type, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch(self, event: Event) -> None:
        listeners = list(self._listeners.get(type(event), []))
        logger.debug("Dispatching %s to %s listener(s)", type(event).__name__, len(listeners))
        for listener in listeners:
            listener(event)
